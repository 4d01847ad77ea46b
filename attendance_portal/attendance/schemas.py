"""Attendance Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Request  → request bodies (write)
  - *Response → response bodies (read)
"""


import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from attendance_portal.common.constants import (
    ApprovalStatus,
    CheckMethod,
    DeviceClass,
    LocationKind,
)


# ═════════════════════════════════════════════════════════════════════
# Check in / out
# ═════════════════════════════════════════════════════════════════════


class GPSFix(BaseModel):
    """Coordinates reported by the client; ranges are enforced here, not in geomath."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0, description="Reported accuracy in meters")
    device_class: DeviceClass = DeviceClass.mobile
    location_name: Optional[str] = Field(None, max_length=255)


class CheckInRequest(GPSFix):
    """Payload for checking in on-site."""

    lateness_reason: Optional[str] = Field(
        None,
        max_length=1000,
        description="Required when checking in after the late cutoff",
    )


class CheckOutRequest(GPSFix):
    """Payload for checking out."""


class AttendanceRecordResponse(BaseModel):
    """Single attendance record."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    attendance_date: date
    check_in_time: datetime
    check_out_time: Optional[datetime] = None
    check_in_location_name: Optional[str] = None
    check_out_location_name: Optional[str] = None
    check_in_method: CheckMethod
    check_out_method: Optional[CheckMethod] = None
    work_hours: Optional[float] = None
    approval_status: ApprovalStatus
    on_official_duty_outside_premises: bool = False
    device_class: Optional[DeviceClass] = None
    is_late: bool = False
    lateness_reason: Optional[str] = None
    clock_skew_flagged: bool = False
    off_premises_request_id: Optional[uuid.UUID] = None
    is_countable: bool


class CheckInResponse(BaseModel):
    """Response after a successful check-in."""

    message: str
    record: AttendanceRecordResponse
    distance_m: Optional[float] = None
    radius_m: float
    missed_checkouts: list[date] = Field(
        default_factory=list,
        description="Earlier days that were auto-closed because no checkout was recorded",
    )
    warning: Optional[str] = None


class CheckOutResponse(BaseModel):
    """Response after a successful check-out."""

    message: str
    record: AttendanceRecordResponse
    work_hours: float
    distance_m: Optional[float] = None
    radius_m: Optional[float] = None


class TodayAttendanceResponse(BaseModel):
    """Caller's state for the current attendance day."""

    attendance_date: date
    record: Optional[AttendanceRecordResponse] = None
    can_check_in: bool
    can_check_out: bool
    status: str


# ═════════════════════════════════════════════════════════════════════
# GPS samples
# ═════════════════════════════════════════════════════════════════════


class LocationSampleIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0)
    timestamp: Optional[datetime] = Field(
        None, description="Client fix time; server receive time when omitted",
    )


class LocationSamplesRequest(BaseModel):
    device_class: DeviceClass = DeviceClass.mobile
    samples: list[LocationSampleIn] = Field(..., min_length=1, max_length=50)


class LocationSamplesResponse(BaseModel):
    accepted: int
    dropped: int
    pending: int


class LocationStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: LocationKind
    distance_m: Optional[float] = None
    radius_m: float
    latitude: float
    longitude: float
    device_class: DeviceClass
    observed_at: datetime
    samples_in_batch: int
