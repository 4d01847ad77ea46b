"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

BASE_ERROR_URI = "https://attendance.portal/errors"

logger = logging.getLogger(__name__)


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ForbiddenException(AppException):
    """403 — insufficient permissions or wrong department scope."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


# Name used by the approval workflow
AuthorizationError = ForbiddenException


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


# ── Attendance state errors ─────────────────────────────────────────

class DuplicateSessionError(AppException):
    """409 — the user already has an attendance record for the day."""

    def __init__(
        self,
        check_in_time: Optional[datetime],
        *,
        check_out_time: Optional[datetime] = None,
    ) -> None:
        self.check_in_time = check_in_time
        self.check_out_time = check_out_time
        stamp = check_in_time.isoformat() if check_in_time else "unknown"
        if check_out_time is not None:
            detail = (
                f"You have already completed your attendance for today "
                f"(checked in at {stamp}, checked out at {check_out_time.isoformat()})."
            )
        else:
            detail = (
                f"You have already checked in today at {stamp}. "
                f"Please check out when you finish your work."
            )
        super().__init__(
            status_code=409,
            error_type="duplicate-session",
            title="Already Checked In",
            detail=detail,
            errors={"check_in_time": [stamp]},
        )


class NoOpenSessionError(AppException):
    """409 — there is no open session to close."""

    def __init__(self, detail: str = "No open check-in found for today. Please check in first.") -> None:
        super().__init__(
            status_code=409,
            error_type="no-open-session",
            title="No Open Session",
            detail=detail,
        )


class NotApprovedError(AppException):
    """409 — checkout blocked until a supervisor acts on the off-premises check-in."""

    def __init__(self, approval_status: str) -> None:
        super().__init__(
            status_code=409,
            error_type="not-approved",
            title="Check-In Not Approved",
            detail=(
                "Your off-premises check-in has not been approved by a supervisor yet, "
                "so you cannot check out. "
                f"Current approval status: {approval_status}."
            ),
            errors={"approval_status": [approval_status]},
        )


class OffSiteError(AppException):
    """422 — the reported position is outside the geofence for this device."""

    def __init__(
        self,
        *,
        direction: str,
        distance_m: Optional[float],
        radius_m: float,
    ) -> None:
        if distance_m is None:
            where = "You have no assigned location"
        else:
            where = f"You are {round(distance_m)} m from your assigned location"
        hint = (
            " Submit an off-premises request for supervisor approval."
            if direction == "check_in"
            else ""
        )
        super().__init__(
            status_code=422,
            error_type="off-site",
            title="Outside Premises",
            detail=f"{where}; the allowed radius for this device is {round(radius_m)} m.{hint}",
            errors={
                "distance_m": [str(round(distance_m)) if distance_m is not None else "n/a"],
                "radius_m": [str(round(radius_m))],
            },
        )


class InvalidStateTransitionError(AppException):
    """409 — a workflow transition is not legal from the current state."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(
            status_code=409,
            error_type="invalid-state-transition",
            title="Invalid State Transition",
            detail=f"Cannot {requested} a request that is currently '{current}'.",
            errors={"status": [current]},
        )


# ── Transient errors ────────────────────────────────────────────────

class StorageError(AppException):
    """503 — the database call failed; safe to retry."""

    def __init__(self, detail: str = "The attendance store is temporarily unavailable. Please try again.") -> None:
        super().__init__(
            status_code=503,
            error_type="storage-error",
            title="Storage Unavailable",
            detail=detail,
        )


class AdmissionTimeoutError(AppException):
    """503 — a queued check-in waited too long for the user's admission slot."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            status_code=503,
            error_type="admission-timeout",
            title="Check-In Busy",
            detail=(
                f"Another check-in for your account is still being processed "
                f"(waited {timeout_seconds:g}s). Please try again."
            ),
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "kind": exc.error_type,
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    headers = {"Retry-After": "1"} if exc.status_code == 503 else None
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
        headers=headers,
    )


async def _handle_storage_error(
    request: Request,
    exc: DBAPIError,
) -> JSONResponse:
    if isinstance(exc, IntegrityError):
        logger.warning("Integrity error on %s: %s", request.url.path, exc.orig)
        return await _handle_app_exception(
            request,
            AppException(
                status_code=409,
                error_type="conflict",
                title="Conflict",
                detail="The change conflicts with existing data.",
            ),
        )
    logger.error("Storage error on %s: %s", request.url.path, exc)
    return await _handle_app_exception(request, StorageError())


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "kind": "validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(OperationalError, _handle_storage_error)      # type: ignore[arg-type]
    app.add_exception_handler(DBAPIError, _handle_storage_error)            # type: ignore[arg-type]
