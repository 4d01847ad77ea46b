"""Core HR ORM models: Department, GeofenceLocation, StaffProfile.

SQLAlchemy 2.0 async-compatible models with Mapped[] annotations.
Column names match the PostgreSQL schema defined in 001_initial_schema.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_portal.common.constants import UserRole
from attendance_portal.database import Base

if TYPE_CHECKING:
    from attendance_portal.geofence.geomath import Coordinate


# ═════════════════════════════════════════════════════════════════════
# Department
# ═════════════════════════════════════════════════════════════════════


class Department(Base):
    """Organisational department; scopes what a department head may approve."""

    __tablename__ = "departments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(150), unique=True, nullable=False)
    code: Mapped[Optional[str]] = mapped_column(sa.String(20), unique=True)
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, server_default=sa.text("TRUE"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # ── Relationships ───────────────────────────────────────────────
    staff: Mapped[list[StaffProfile]] = relationship(back_populates="department")

    def __repr__(self) -> str:
        return f"<Department {self.name!r} ({self.code})>"


# ═════════════════════════════════════════════════════════════════════
# GeofenceLocation
# ═════════════════════════════════════════════════════════════════════


class GeofenceLocation(Base):
    """Registered premises.

    ``radius_meters`` is informational; the effective radius always comes
    from the device-radius policy.
    """

    __tablename__ = "geofence_locations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(150), unique=True, nullable=False)
    address: Mapped[Optional[str]] = mapped_column(sa.Text)
    latitude: Mapped[float] = mapped_column(sa.Float, nullable=False)
    longitude: Mapped[float] = mapped_column(sa.Float, nullable=False)
    radius_meters: Mapped[int] = mapped_column(sa.Integer, server_default="400")
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, server_default=sa.text("TRUE"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    @property
    def coordinate(self) -> Coordinate:
        from attendance_portal.geofence.geomath import Coordinate

        return Coordinate(latitude=self.latitude, longitude=self.longitude)

    def __repr__(self) -> str:
        return f"<GeofenceLocation {self.name!r} ({self.latitude}, {self.longitude})>"


# ═════════════════════════════════════════════════════════════════════
# StaffProfile
# ═════════════════════════════════════════════════════════════════════


class StaffProfile(Base):
    """Staff member known to the portal.

    ``id`` is the identity provider's subject; the row is provisioned
    out-of-band and only read here.
    """

    __tablename__ = "user_profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    first_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(sa.String(100))
    email: Mapped[str] = mapped_column(sa.String(255), unique=True, nullable=False)
    role: Mapped[UserRole] = mapped_column(
        sa.Enum(UserRole, name="user_role", native_enum=False, length=32),
        nullable=False,
        default=UserRole.staff,
    )
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("departments.id"),
    )
    assigned_location_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("geofence_locations.id"),
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, server_default=sa.text("TRUE"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # ── Relationships ───────────────────────────────────────────────
    department: Mapped[Optional[Department]] = relationship(back_populates="staff")
    assigned_location: Mapped[Optional[GeofenceLocation]] = relationship()

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def __repr__(self) -> str:
        return f"<StaffProfile {self.email!r} role={self.role.value}>"
