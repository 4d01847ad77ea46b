"""Off-premises workflow Pydantic v2 schemas."""


import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from attendance_portal.attendance.schemas import GPSFix
from attendance_portal.common.constants import DeviceClass, OffPremisesStatus


# ── Requests ────────────────────────────────────────────────────────

class OffPremisesSubmitRequest(GPSFix):
    """Check-in attempt from outside the caller's geofence."""

    reason: Optional[str] = Field(None, max_length=1000)
    google_maps_name: Optional[str] = Field(None, max_length=255)
    device_info: Optional[dict[str, Any]] = None


class OffPremisesApproveRequest(BaseModel):
    remarks: Optional[str] = Field(None, max_length=1000)


class OffPremisesRejectRequest(BaseModel):
    rejection_reason: Optional[str] = Field(None, max_length=1000)


class OffPremisesRevertRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


# ── Responses ───────────────────────────────────────────────────────

class RequesterBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    first_name: str
    last_name: Optional[str] = None
    email: str
    department_id: Optional[uuid.UUID] = None


class OffPremisesRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    requester: Optional[RequesterBrief] = None
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    location_name: Optional[str] = None
    google_maps_name: Optional[str] = None
    device_class: DeviceClass
    reason: Optional[str] = None
    status: OffPremisesStatus
    approved_by_id: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    linked_attendance_record_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime


class OffPremisesActionResponse(BaseModel):
    message: str
    data: OffPremisesRequestResponse
