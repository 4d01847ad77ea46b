"""Attendance router — check in/out, today's state, GPS sample ingestion.

All endpoints require authentication.
"""


from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_portal.attendance.admission import CheckInDeduplicator
from attendance_portal.attendance.schemas import (
    CheckInRequest,
    CheckInResponse,
    CheckOutRequest,
    CheckOutResponse,
    LocationSamplesRequest,
    LocationSamplesResponse,
    LocationStatusResponse,
    TodayAttendanceResponse,
)
from attendance_portal.attendance.service import AttendanceService
from attendance_portal.auth.dependencies import CurrentUser, get_current_user
from attendance_portal.common.clock import utcnow
from attendance_portal.common.exceptions import NotFoundException
from attendance_portal.common.rate_limit import limiter
from attendance_portal.database import get_db
from attendance_portal.dependencies import (
    get_deduplicator,
    get_location_registry,
    get_location_tracker,
)
from attendance_portal.geofence.batcher import (
    LocationBatcherRegistry,
    LocationSample,
    LocationStatusTracker,
)

router = APIRouter(prefix="", tags=["attendance"])


def _client_meta(request: Request) -> tuple:
    ip = request.client.host if request.client else None
    return ip, request.headers.get("user-agent")


# ── POST /checkin ───────────────────────────────────────────────────

@router.post("/checkin", response_model=CheckInResponse, status_code=201)
@limiter.limit("20/minute")
async def check_in(
    request: Request,
    body: CheckInRequest,
    user: CurrentUser = Depends(get_current_user),
    deduplicator: CheckInDeduplicator = Depends(get_deduplicator),
    db: AsyncSession = Depends(get_db),
):
    """Check in from inside the assigned geofence."""
    ip, user_agent = _client_meta(request)
    return await AttendanceService.check_in(
        db,
        user,
        body,
        deduplicator=deduplicator,
        ip_address=ip,
        user_agent=user_agent,
    )


# ── POST /checkout ──────────────────────────────────────────────────

@router.post("/checkout", response_model=CheckOutResponse)
async def check_out(
    request: Request,
    body: CheckOutRequest,
    user: CurrentUser = Depends(get_current_user),
    registry: LocationBatcherRegistry = Depends(get_location_registry),
    db: AsyncSession = Depends(get_db),
):
    """Close today's session and stop tracking the caller's GPS stream."""
    ip, user_agent = _client_meta(request)
    response = await AttendanceService.check_out(
        db,
        user,
        body,
        ip_address=ip,
        user_agent=user_agent,
    )
    await registry.discard(user.id)
    return response


# ── GET /today ──────────────────────────────────────────────────────

@router.get("/today", response_model=TodayAttendanceResponse)
async def today(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await AttendanceService.get_today(db, user)


# ── POST /location-samples ──────────────────────────────────────────

@router.post("/location-samples", response_model=LocationSamplesResponse, status_code=202)
async def location_samples(
    body: LocationSamplesRequest,
    user: CurrentUser = Depends(get_current_user),
    registry: LocationBatcherRegistry = Depends(get_location_registry),
):
    """Feed raw GPS fixes into the caller's batcher."""
    accepted = 0
    received_at = utcnow()
    for fix in body.samples:
        sample = LocationSample(
            latitude=fix.latitude,
            longitude=fix.longitude,
            accuracy=fix.accuracy,
            timestamp=fix.timestamp or received_at,
            device_class=body.device_class,
        )
        if await registry.observe(user.id, sample):
            accepted += 1

    return LocationSamplesResponse(
        accepted=accepted,
        dropped=len(body.samples) - accepted,
        pending=registry.get(user.id).pending,
    )


# ── GET /location-status ────────────────────────────────────────────

@router.get("/location-status", response_model=LocationStatusResponse)
async def location_status(
    user: CurrentUser = Depends(get_current_user),
    tracker: LocationStatusTracker = Depends(get_location_tracker),
):
    """Latest on-site / off-site classification from the caller's GPS stream."""
    status = tracker.latest(user.id)
    if status is None:
        raise NotFoundException("Location status", user.id)
    return LocationStatusResponse.model_validate(status)
