"""Attendance ledger — every mutation of attendance_records goes through here.

The unique (user_id, attendance_date) constraint backs the admission slot
for writers in other processes: a losing insert is reported as a
duplicate session, never as a storage fault.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_portal.attendance.models import AttendanceRecord
from attendance_portal.common.audit import create_audit_entry
from attendance_portal.common.clock import as_utc, attendance_day, end_of_day
from attendance_portal.common.constants import ApprovalStatus, CheckMethod, DeviceClass
from attendance_portal.common.exceptions import (
    DuplicateSessionError,
    InvalidStateTransitionError,
    NoOpenSessionError,
    NotApprovedError,
    NotFoundException,
)
from attendance_portal.geofence.geomath import Coordinate

logger = logging.getLogger(__name__)


def record_snapshot(record: AttendanceRecord) -> dict[str, Any]:
    """JSON-safe view of a record for audit old/new values."""
    return {
        "id": str(record.id),
        "user_id": str(record.user_id),
        "attendance_date": record.attendance_date.isoformat(),
        "check_in_time": record.check_in_time.isoformat() if record.check_in_time else None,
        "check_out_time": record.check_out_time.isoformat() if record.check_out_time else None,
        "work_hours": record.work_hours,
        "approval_status": record.approval_status.value,
        "check_in_method": record.check_in_method.value if record.check_in_method else None,
        "check_out_method": record.check_out_method.value if record.check_out_method else None,
        "off_premises_request_id": (
            str(record.off_premises_request_id) if record.off_premises_request_id else None
        ),
    }


def compute_work_hours(check_in_time: datetime, check_out_time: datetime) -> tuple[float, bool]:
    """Return (hours rounded to 2 dp, skewed). Negative spans clamp to 0.0."""
    seconds = (as_utc(check_out_time) - as_utc(check_in_time)).total_seconds()
    if seconds < 0:
        return 0.0, True
    return round(seconds / 3600, 2), False


class AttendanceLedger:

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    async def find_for_day(
        db: AsyncSession,
        user_id: uuid.UUID,
        day: date,
    ) -> Optional[AttendanceRecord]:
        result = await db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.user_id == user_id,
                AttendanceRecord.attendance_date == day,
            )
        )
        return result.scalars().first()

    @staticmethod
    async def get(
        db: AsyncSession,
        record_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Optional[AttendanceRecord]:
        query = select(AttendanceRecord).where(AttendanceRecord.id == record_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        return (await db.execute(query)).scalars().first()

    # ── Open ────────────────────────────────────────────────────────

    @staticmethod
    async def open_session(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        check_in_time: datetime,
        location: Optional[Coordinate],
        device_class: Optional[DeviceClass],
        approval_status: ApprovalStatus = ApprovalStatus.normal,
        check_in_method: CheckMethod = CheckMethod.gps,
        location_name: Optional[str] = None,
        location_id: Optional[uuid.UUID] = None,
        is_late: bool = False,
        lateness_reason: Optional[str] = None,
        off_premises_request_id: Optional[uuid.UUID] = None,
        on_official_duty_outside_premises: bool = False,
    ) -> AttendanceRecord:
        """Insert the day's record. Any existing record for that day is a duplicate."""
        day = attendance_day(check_in_time)

        existing = await AttendanceLedger.find_for_day(db, user_id, day)
        if existing is not None:
            raise DuplicateSessionError(
                existing.check_in_time, check_out_time=existing.check_out_time,
            )

        record = AttendanceRecord(
            user_id=user_id,
            attendance_date=day,
            check_in_time=check_in_time,
            check_in_latitude=location.latitude if location else None,
            check_in_longitude=location.longitude if location else None,
            check_in_location_name=location_name,
            check_in_location_id=location_id,
            check_in_method=check_in_method,
            device_class=device_class,
            approval_status=approval_status,
            is_late=is_late,
            lateness_reason=lateness_reason,
            off_premises_request_id=off_premises_request_id,
            on_official_duty_outside_premises=on_official_duty_outside_premises,
        )
        try:
            # Only this insert is undone if it loses the race
            async with db.begin_nested():
                db.add(record)
                await db.flush()
        except IntegrityError:
            # Another worker won the insert between our read and write
            winner = await AttendanceLedger.find_for_day(db, user_id, day)
            logger.info("Concurrent check-in for %s on %s lost the insert", user_id, day)
            raise DuplicateSessionError(
                winner.check_in_time if winner else None,
                check_out_time=winner.check_out_time if winner else None,
            )
        return record

    # ── Close ───────────────────────────────────────────────────────

    @staticmethod
    async def close_session(
        db: AsyncSession,
        record_id: uuid.UUID,
        *,
        check_out_time: datetime,
        location: Optional[Coordinate],
        location_name: Optional[str] = None,
        check_out_method: CheckMethod = CheckMethod.gps,
        actor_id: Optional[uuid.UUID] = None,
    ) -> AttendanceRecord:
        """Close an open session and derive work_hours (never negative)."""
        record = await AttendanceLedger.get(db, record_id, for_update=True)
        if record is None or record.check_out_time is not None:
            raise NoOpenSessionError()
        if record.approval_status in (
            ApprovalStatus.pending_supervisor_approval,
            ApprovalStatus.rejected_offpremises,
        ):
            raise NotApprovedError(record.approval_status.value)

        hours, skewed = compute_work_hours(record.check_in_time, check_out_time)

        record.check_out_time = check_out_time
        record.check_out_latitude = location.latitude if location else None
        record.check_out_longitude = location.longitude if location else None
        record.check_out_location_name = location_name
        record.check_out_method = check_out_method
        record.work_hours = hours
        if skewed:
            record.clock_skew_flagged = True
        await db.flush()

        if skewed:
            logger.warning(
                "Checkout before check-in for record %s (in=%s, out=%s); work hours clamped to 0",
                record.id,
                record.check_in_time,
                check_out_time,
            )
            await create_audit_entry(
                db,
                action="clock_skew_detected",
                entity_type="attendance_record",
                entity_id=record.id,
                actor_id=actor_id,
                new_values={
                    "check_in_time": as_utc(record.check_in_time).isoformat(),
                    "check_out_time": as_utc(check_out_time).isoformat(),
                    "work_hours": 0.0,
                },
            )
        return record

    @staticmethod
    async def close_missed_sessions(
        db: AsyncSession,
        user_id: uuid.UUID,
        before_day: date,
    ) -> list[AttendanceRecord]:
        """Auto-close countable sessions from earlier days left open at 23:59:59 local."""
        result = await db.execute(
            select(AttendanceRecord)
            .where(
                AttendanceRecord.user_id == user_id,
                AttendanceRecord.attendance_date < before_day,
                AttendanceRecord.check_out_time.is_(None),
                AttendanceRecord.approval_status.in_(
                    [ApprovalStatus.normal, ApprovalStatus.approved_offpremises]
                ),
            )
            .order_by(AttendanceRecord.attendance_date)
            .with_for_update()
        )
        records = list(result.scalars().all())

        for record in records:
            closed_at = end_of_day(record.attendance_date)
            hours, skewed = compute_work_hours(record.check_in_time, closed_at)
            record.check_out_time = closed_at
            record.check_out_method = CheckMethod.auto_system
            record.check_out_location_name = "Auto check-out (missed)"
            record.work_hours = hours
            record.clock_skew_flagged = record.clock_skew_flagged or skewed

            await create_audit_entry(
                db,
                action="auto_checkout_missed",
                entity_type="attendance_record",
                entity_id=record.id,
                actor_id=None,
                new_values=record_snapshot(record),
            )
            logger.info(
                "Auto-closed missed checkout for %s on %s", user_id, record.attendance_date,
            )

        if records:
            await db.flush()
        return records

    # ── Compensating deletes (off-premises workflow only) ──────────

    @staticmethod
    async def revert_approved_offpremises(
        db: AsyncSession,
        record_id: uuid.UUID,
    ) -> dict[str, Any]:
        """Hard-delete a record created by an off-premises approval. Returns its snapshot."""
        record = await AttendanceLedger.get(db, record_id, for_update=True)
        if record is None:
            raise NotFoundException("Attendance record", record_id)
        if record.approval_status != ApprovalStatus.approved_offpremises:
            raise InvalidStateTransitionError(record.approval_status.value, "revert")

        snapshot = record_snapshot(record)
        await db.delete(record)
        await db.flush()
        return snapshot

    @staticmethod
    async def discard_provisional(
        db: AsyncSession,
        request_id: uuid.UUID,
    ) -> int:
        """Delete the pending record opened on behalf of an off-premises request."""
        result = await db.execute(
            delete(AttendanceRecord).where(
                AttendanceRecord.off_premises_request_id == request_id,
                AttendanceRecord.approval_status == ApprovalStatus.pending_supervisor_approval,
            )
        )
        await db.flush()
        return result.rowcount or 0
