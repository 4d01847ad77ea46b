"""Device radius settings schemas.

Range checks (50–5000 m) are done by the service so that a bad entry
rejects the whole batch with one problem body listing every error.
"""


from typing import Optional

from pydantic import BaseModel, Field

from attendance_portal.common.constants import DeviceClass


class DeviceRadiusEntry(BaseModel):
    device_class: DeviceClass
    check_in_radius_meters: int
    check_out_radius_meters: int


class DeviceRadiusUpdateRequest(BaseModel):
    """Bulk update; classes not listed keep their current radii."""

    settings: list[DeviceRadiusEntry] = Field(..., min_length=1)


class DeviceRadiusSettingsResponse(BaseModel):
    """Effective radii for every device class (overrides merged onto defaults)."""

    settings: list[DeviceRadiusEntry]
    message: Optional[str] = None
