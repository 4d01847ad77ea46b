"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
The request clock is frozen by ``clock``; move it by assigning ``clock.now``.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from attendance_portal.attendance.admission import CheckInDeduplicator
from attendance_portal.common.constants import UserRole
from attendance_portal.config import settings
from attendance_portal.database import Base, get_db
from attendance_portal.dependencies import (
    get_deduplicator,
    get_location_registry,
    get_location_tracker,
    get_notification_outbox,
)
from attendance_portal.geofence.batcher import LocationBatcherRegistry, LocationStatusTracker
from attendance_portal.geofence.proximity import DeviceRadiusService
from attendance_portal.main import create_app
from attendance_portal.notifications.service import NotificationOutbox

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import attendance_portal.common.audit  # noqa: F401
import attendance_portal.core_hr.models  # noqa: F401
import attendance_portal.geofence.models  # noqa: F401
import attendance_portal.attendance.models  # noqa: F401
import attendance_portal.offpremises.models  # noqa: F401
import attendance_portal.notifications.models  # noqa: F401

# ── SQLite compat: compile PG-specific types to TEXT/BLOB ───────────

from sqlalchemy.dialects.postgresql import INET, JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(INET, "sqlite")
def _inet_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and uuid_generate_v4() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    dbapi_conn.create_function(
        "uuid_generate_v4", 0, lambda: str(uuid.uuid4()),
    )


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_process_state():
    """Drop the radius cache and rate-limit counters between tests."""
    from attendance_portal.common.rate_limit import limiter

    DeviceRadiusService.invalidate_cache()
    limiter.reset()
    yield
    DeviceRadiusService.invalidate_cache()


# ── Frozen request clock ────────────────────────────────────────────

# A weekday morning before the 09:00 late cutoff (ATTENDANCE_TIMEZONE=UTC)
BASE_NOW = datetime(2026, 3, 2, 8, 30, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    frozen = FrozenClock(BASE_NOW)
    with patch("attendance_portal.attendance.service.utcnow", frozen), \
            patch("attendance_portal.offpremises.service.utcnow", frozen):
        yield frozen


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
def location_tracker() -> LocationStatusTracker:
    return LocationStatusTracker(TestSessionFactory)


@pytest.fixture
def location_registry(location_tracker) -> LocationBatcherRegistry:
    return LocationBatcherRegistry(
        location_tracker.consumer_for,
        on_evict=location_tracker.forget,
        batch_size=3,
        interval=60.0,
    )


@pytest.fixture
async def app(location_tracker, location_registry):
    """Create a fresh app instance with DB and coordinator dependencies overridden."""
    deduplicator = CheckInDeduplicator(timeout=2.0)

    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_deduplicator] = lambda: deduplicator
    application.dependency_overrides[get_location_registry] = lambda: location_registry
    application.dependency_overrides[get_location_tracker] = lambda: location_tracker
    application.dependency_overrides[get_notification_outbox] = (
        lambda: NotificationOutbox(session_factory=TestSessionFactory)
    )
    yield application
    application.dependency_overrides.clear()
    await location_registry.close()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Geography helpers ───────────────────────────────────────────────

HQ_LAT = 19.0760
HQ_LON = 72.8777

# Meters per degree of latitude on the haversine sphere
METERS_PER_DEGREE_LAT = 6_371_000.0 * 3.141592653589793 / 180


def north_of(lat: float, meters: float) -> float:
    """Latitude *meters* due north of *lat*; exact for haversine along a meridian."""
    return lat + meters / METERS_PER_DEGREE_LAT


def fix(meters_north: float = 0.0, *, device_class: str = "mobile", **extra) -> dict:
    """Request body for a GPS fix *meters_north* of HQ."""
    return {
        "latitude": north_of(HQ_LAT, meters_north),
        "longitude": HQ_LON,
        "accuracy": 12.0,
        "device_class": device_class,
        **extra,
    }


# ── Model factories ─────────────────────────────────────────────────

async def _make_department(
    db: AsyncSession,
    *,
    name: str = "Operations",
    code: str = "OPS",
):
    from attendance_portal.core_hr.models import Department

    dept = Department(id=uuid.uuid4(), name=name, code=code, is_active=True)
    db.add(dept)
    await db.commit()
    return dept


async def _make_location(
    db: AsyncSession,
    *,
    name: str = "Mumbai HQ",
    latitude: float = HQ_LAT,
    longitude: float = HQ_LON,
):
    from attendance_portal.core_hr.models import GeofenceLocation

    loc = GeofenceLocation(
        id=uuid.uuid4(),
        name=name,
        latitude=latitude,
        longitude=longitude,
        radius_meters=400,
        is_active=True,
    )
    db.add(loc)
    await db.commit()
    return loc


async def _make_staff(
    db: AsyncSession,
    *,
    email: Optional[str] = None,
    first_name: str = "Test",
    last_name: str = "Staff",
    role: UserRole = UserRole.staff,
    department_id: Optional[uuid.UUID] = None,
    assigned_location_id: Optional[uuid.UUID] = None,
    is_active: bool = True,
):
    from attendance_portal.core_hr.models import StaffProfile

    profile = StaffProfile(
        id=uuid.uuid4(),
        first_name=first_name,
        last_name=last_name,
        email=email or f"{uuid.uuid4().hex[:8]}@attendance.test",
        role=role,
        department_id=department_id,
        assigned_location_id=assigned_location_id,
        is_active=is_active,
    )
    db.add(profile)
    await db.commit()
    return profile


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    user_id: uuid.UUID,
    role: UserRole = UserRole.staff,
    department_id: Optional[uuid.UUID] = None,
    expired: bool = False,
) -> str:
    """Generate an identity-provider style JWT for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "exp": exp,
    }
    if department_id is not None:
        payload["department_id"] = str(department_id)
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_for(profile) -> dict[str, str]:
    """Bearer headers carrying the profile's own role and department."""
    token = create_access_token(profile.id, profile.role, profile.department_id)
    return {"Authorization": f"Bearer {token}"}


# ── Common seeded world ─────────────────────────────────────────────

@pytest.fixture
async def department(db):
    return await _make_department(db)


@pytest.fixture
async def hq(db):
    return await _make_location(db)


@pytest.fixture
async def staff(db, department, hq):
    return await _make_staff(
        db,
        first_name="Asha",
        last_name="Rao",
        department_id=department.id,
        assigned_location_id=hq.id,
    )


@pytest.fixture
async def dept_head(db, department):
    return await _make_staff(
        db,
        first_name="Dev",
        last_name="Head",
        role=UserRole.department_head,
        department_id=department.id,
    )


@pytest.fixture
async def admin(db):
    return await _make_staff(db, first_name="Ada", last_name="Admin", role=UserRole.admin)
