"""Enums and constants for the attendance portal — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    staff = "staff"
    department_head = "department_head"
    regional_manager = "regional_manager"
    admin = "admin"


# Roles allowed to approve, reject and revert off-premises requests
APPROVER_ROLES: frozenset[UserRole] = frozenset(
    {UserRole.department_head, UserRole.regional_manager, UserRole.admin}
)


# ── Devices / Geofence ──────────────────────────────────────────────

class DeviceClass(str, enum.Enum):
    mobile = "mobile"
    tablet = "tablet"
    laptop = "laptop"
    desktop = "desktop"


class Direction(str, enum.Enum):
    check_in = "check_in"
    check_out = "check_out"


class LocationKind(str, enum.Enum):
    on_site = "on_site"
    off_site = "off_site"


# ── Attendance ──────────────────────────────────────────────────────

class ApprovalStatus(str, enum.Enum):
    normal = "normal"
    pending_supervisor_approval = "pending_supervisor_approval"
    approved_offpremises = "approved_offpremises"
    rejected_offpremises = "rejected_offpremises"


class CheckMethod(str, enum.Enum):
    gps = "gps"
    remote_offpremises = "remote_offpremises"
    auto_system = "auto_system"


# ── Off-premises workflow ───────────────────────────────────────────

class OffPremisesStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    offpremises_checkin_request = "offpremises_checkin_request"
    offpremises_checkin_approved = "offpremises_checkin_approved"
    offpremises_checkin_rejected = "offpremises_checkin_rejected"
    offpremises_approval_reverted = "offpremises_approval_reverted"


# ── Misc constants ──────────────────────────────────────────────────

EARTH_RADIUS_METERS = 6_371_000.0
MIN_DEVICE_RADIUS_METERS = 50
MAX_DEVICE_RADIUS_METERS = 5000
DEFAULT_REJECTION_REASON = "Request rejected by supervisor"
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
