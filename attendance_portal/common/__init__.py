"""Common module — shared utilities for the attendance portal."""

from attendance_portal.common.audit import AuditTrail, create_audit_entry
from attendance_portal.common.constants import (
    APPROVER_ROLES,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    ApprovalStatus,
    CheckMethod,
    DeviceClass,
    Direction,
    LocationKind,
    NotificationType,
    OffPremisesStatus,
    UserRole,
)
from attendance_portal.common.exceptions import (
    AdmissionTimeoutError,
    AppException,
    AuthorizationError,
    DuplicateSessionError,
    ForbiddenException,
    InvalidStateTransitionError,
    NoOpenSessionError,
    NotApprovedError,
    NotFoundException,
    OffSiteError,
    StorageError,
    ValidationException,
    register_exception_handlers,
)
from attendance_portal.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "APPROVER_ROLES",
    "ApprovalStatus",
    "CheckMethod",
    "DeviceClass",
    "Direction",
    "LocationKind",
    "NotificationType",
    "OffPremisesStatus",
    "UserRole",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AdmissionTimeoutError",
    "AppException",
    "AuthorizationError",
    "DuplicateSessionError",
    "ForbiddenException",
    "InvalidStateTransitionError",
    "NoOpenSessionError",
    "NotApprovedError",
    "NotFoundException",
    "OffSiteError",
    "StorageError",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
