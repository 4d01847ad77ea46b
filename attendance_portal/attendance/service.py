"""Attendance service layer — geofenced check-in / check-out.

Business logic:
  - Check-in only from on-site; off-site callers are sent to the off-premises workflow
  - One record per user per day, enforced by the admission slot and the ledger
  - Late check-ins need a reason; missed checkouts from earlier days are auto-closed
  - Check-out blocked until an off-premises check-in has been approved
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from attendance_portal.attendance.admission import CheckInDeduplicator
from attendance_portal.attendance.ledger import AttendanceLedger
from attendance_portal.attendance.models import AttendanceRecord
from attendance_portal.attendance.schemas import (
    AttendanceRecordResponse,
    CheckInRequest,
    CheckInResponse,
    CheckOutRequest,
    CheckOutResponse,
    TodayAttendanceResponse,
)
from attendance_portal.auth.dependencies import CurrentUser
from attendance_portal.common.audit import create_audit_entry
from attendance_portal.common.clock import attendance_day, is_late, utcnow
from attendance_portal.common.constants import ApprovalStatus, CheckMethod, Direction
from attendance_portal.common.exceptions import (
    DuplicateSessionError,
    NoOpenSessionError,
    NotApprovedError,
    OffSiteError,
    ValidationException,
)
from attendance_portal.config import settings
from attendance_portal.geofence.geomath import Coordinate
from attendance_portal.geofence.proximity import DeviceRadiusService
from attendance_portal.geofence.resolver import Classification, LocationResolver

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# AttendanceService
# ═════════════════════════════════════════════════════════════════════


class AttendanceService:

    @staticmethod
    async def _classify(
        db: AsyncSession,
        user: CurrentUser,
        fix: Coordinate,
        body,
        direction: Direction,
    ) -> Classification:
        location = user.profile.assigned_location
        policy = await DeviceRadiusService.get_policy(db)
        return LocationResolver.classify(
            location.coordinate if location else None,
            fix,
            body.device_class,
            direction,
            policy,
        )

    @staticmethod
    def _location_name(user: CurrentUser, body) -> Optional[str]:
        if body.location_name:
            return body.location_name
        location = user.profile.assigned_location
        return location.name if location else None

    # ── Check in ────────────────────────────────────────────────────

    @staticmethod
    async def check_in(
        db: AsyncSession,
        user: CurrentUser,
        body: CheckInRequest,
        *,
        deduplicator: CheckInDeduplicator,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> CheckInResponse:
        """Open today's session for an on-site caller. Commits before releasing the slot.

        An existing record for the day is reported before the location is
        looked at, so a retry from anywhere gets the duplicate, not off-site.
        """
        now = utcnow()
        today = attendance_day(now)

        async def _existing() -> Optional[AttendanceRecord]:
            return await AttendanceLedger.find_for_day(db, user.id, today)

        existing = await _existing()
        if existing is not None:
            raise DuplicateSessionError(
                existing.check_in_time, check_out_time=existing.check_out_time,
            )

        fix = Coordinate(body.latitude, body.longitude)
        classification = await AttendanceService._classify(
            db, user, fix, body, Direction.check_in,
        )
        if not classification.on_site:
            raise OffSiteError(
                direction=Direction.check_in.value,
                distance_m=classification.distance_m,
                radius_m=classification.radius_m,
            )

        async with deduplicator.admit(user.id, _existing):
            late = is_late(now)
            reason = (body.lateness_reason or "").strip()
            if late and not reason:
                raise ValidationException({
                    "lateness_reason": [
                        f"You are checking in after {settings.LATE_CHECKIN_CUTOFF}. "
                        f"Please provide a reason for arriving late.",
                    ],
                })

            missed = await AttendanceLedger.close_missed_sessions(db, user.id, today)

            location = user.profile.assigned_location
            record = await AttendanceLedger.open_session(
                db,
                user_id=user.id,
                check_in_time=now,
                location=fix,
                device_class=body.device_class,
                approval_status=ApprovalStatus.normal,
                check_in_method=CheckMethod.gps,
                location_name=AttendanceService._location_name(user, body),
                location_id=location.id if location else None,
                is_late=late,
                lateness_reason=reason if late else None,
            )

            await create_audit_entry(
                db,
                action="check_in",
                entity_type="attendance_record",
                entity_id=record.id,
                actor_id=user.id,
                new_values={
                    "timestamp": now.isoformat(),
                    "latitude": body.latitude,
                    "longitude": body.longitude,
                    "device_class": body.device_class.value,
                    "distance_m": round(classification.distance_m or 0.0, 1),
                    "radius_m": classification.radius_m,
                    "is_late": late,
                },
                ip_address=ip_address,
                user_agent=user_agent,
            )
            await db.commit()

        logger.info(
            "User %s checked in at %.0f m from %s (radius %.0f m)",
            user.id,
            classification.distance_m or 0.0,
            record.check_in_location_name,
            classification.radius_m,
        )

        warning = None
        if missed:
            days = ", ".join(r.attendance_date.isoformat() for r in missed)
            warning = (
                f"You did not check out on {days}. Those sessions were closed "
                f"automatically at the end of the day."
            )

        return CheckInResponse(
            message="Checked in successfully" + (" (late)" if late else ""),
            record=AttendanceRecordResponse.model_validate(record),
            distance_m=classification.distance_m,
            radius_m=classification.radius_m,
            missed_checkouts=[r.attendance_date for r in missed],
            warning=warning,
        )

    # ── Check out ───────────────────────────────────────────────────

    @staticmethod
    async def check_out(
        db: AsyncSession,
        user: CurrentUser,
        body: CheckOutRequest,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> CheckOutResponse:
        """Close today's session.

        Approved off-premises sessions may close from anywhere; all others
        must be inside the check-out radius for the device.
        """
        now = utcnow()
        today = attendance_day(now)

        record = await AttendanceLedger.find_for_day(db, user.id, today)
        if record is None:
            raise NoOpenSessionError()
        if record.check_out_time is not None:
            raise NoOpenSessionError(
                f"You have already checked out today at {record.check_out_time.isoformat()}.",
            )
        if not record.is_countable:
            raise NotApprovedError(record.approval_status.value)

        fix = Coordinate(body.latitude, body.longitude)
        classification: Optional[Classification] = None
        if record.approval_status != ApprovalStatus.approved_offpremises:
            classification = await AttendanceService._classify(
                db, user, fix, body, Direction.check_out,
            )
            if not classification.on_site:
                raise OffSiteError(
                    direction=Direction.check_out.value,
                    distance_m=classification.distance_m,
                    radius_m=classification.radius_m,
                )

        record = await AttendanceLedger.close_session(
            db,
            record.id,
            check_out_time=now,
            location=fix,
            location_name=AttendanceService._location_name(user, body),
            check_out_method=CheckMethod.gps,
            actor_id=user.id,
        )

        await create_audit_entry(
            db,
            action="check_out",
            entity_type="attendance_record",
            entity_id=record.id,
            actor_id=user.id,
            new_values={
                "timestamp": now.isoformat(),
                "latitude": body.latitude,
                "longitude": body.longitude,
                "device_class": body.device_class.value,
                "work_hours": record.work_hours,
                "off_premises": classification is None,
            },
            ip_address=ip_address,
            user_agent=user_agent,
        )

        logger.info("User %s checked out after %.2f h", user.id, record.work_hours or 0.0)

        return CheckOutResponse(
            message="Checked out successfully",
            record=AttendanceRecordResponse.model_validate(record),
            work_hours=record.work_hours or 0.0,
            distance_m=classification.distance_m if classification else None,
            radius_m=classification.radius_m if classification else None,
        )

    # ── Today ───────────────────────────────────────────────────────

    @staticmethod
    async def get_today(
        db: AsyncSession,
        user: CurrentUser,
        *,
        now: Optional[datetime] = None,
    ) -> TodayAttendanceResponse:
        today = attendance_day(now or utcnow())
        record = await AttendanceLedger.find_for_day(db, user.id, today)

        if record is None:
            status = "not_checked_in"
        elif record.check_out_time is not None:
            status = "checked_out"
        elif record.approval_status == ApprovalStatus.pending_supervisor_approval:
            status = "awaiting_approval"
        else:
            status = "checked_in"

        return TodayAttendanceResponse(
            attendance_date=today,
            record=AttendanceRecordResponse.model_validate(record) if record else None,
            can_check_in=record is None,
            can_check_out=status == "checked_in",
            status=status,
        )
