"""Settings router — device-class geofence radii (read: any user, write: admin)."""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_portal.auth.dependencies import CurrentUser, get_current_user, require_role
from attendance_portal.common.constants import DeviceClass, UserRole
from attendance_portal.database import get_db
from attendance_portal.geofence.proximity import DeviceProximityPolicy, DeviceRadiusService
from attendance_portal.geofence.schemas import (
    DeviceRadiusEntry,
    DeviceRadiusSettingsResponse,
    DeviceRadiusUpdateRequest,
)

router = APIRouter(prefix="", tags=["settings"])


def _to_response(
    policy: DeviceProximityPolicy, message: Optional[str] = None,
) -> DeviceRadiusSettingsResponse:
    return DeviceRadiusSettingsResponse(
        settings=[
            DeviceRadiusEntry(
                device_class=device_class,
                check_in_radius_meters=policy.radii[device_class][0],
                check_out_radius_meters=policy.radii[device_class][1],
            )
            for device_class in DeviceClass
        ],
        message=message,
    )


# ── GET /device-radius ──────────────────────────────────────────────

@router.get("/device-radius", response_model=DeviceRadiusSettingsResponse)
async def get_device_radius(
    _: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    policy = await DeviceRadiusService.get_policy(db)
    return _to_response(policy)


# ── PUT /device-radius (admin only, all-or-nothing) ────────────────

@router.put("/device-radius", response_model=DeviceRadiusSettingsResponse)
async def update_device_radius(
    body: DeviceRadiusUpdateRequest,
    request: Request,
    admin: CurrentUser = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    policy = await DeviceRadiusService.replace_settings(
        db,
        body.settings,
        admin.id,
        ip_address=request.client.host if request.client else None,
    )
    return _to_response(policy, "Device radius settings updated")
