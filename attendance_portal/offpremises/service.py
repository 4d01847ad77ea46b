"""Off-premises check-in approval workflow.

States: pending → approved | rejected; approved → pending via revert.

  - submit: only from off-site; opens a provisional, non-countable record
  - approve: promotes (or re-opens) the record as approved_offpremises
  - reject: discards the provisional record
  - revert: deletes the approved record and returns the request to pending

Every transition is a compare-and-set on the current status, so a stale
read can never approve a request that was rejected in the meantime.
Department heads may only act on requests from their own department.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from attendance_portal.attendance.admission import CheckInDeduplicator
from attendance_portal.attendance.ledger import AttendanceLedger
from attendance_portal.attendance.models import AttendanceRecord
from attendance_portal.auth.dependencies import CurrentUser
from attendance_portal.common.audit import create_audit_entry
from attendance_portal.common.clock import attendance_day, utcnow
from attendance_portal.common.constants import (
    APPROVER_ROLES,
    DEFAULT_REJECTION_REASON,
    ApprovalStatus,
    CheckMethod,
    Direction,
    OffPremisesStatus,
    UserRole,
)
from attendance_portal.common.exceptions import (
    AuthorizationError,
    DuplicateSessionError,
    InvalidStateTransitionError,
    NotFoundException,
    ValidationException,
)
from attendance_portal.common.pagination import (
    PaginatedResponse,
    PaginationParams,
    paginate,
)
from attendance_portal.core_hr.models import StaffProfile
from attendance_portal.geofence.geomath import Coordinate
from attendance_portal.geofence.proximity import DeviceRadiusService
from attendance_portal.geofence.resolver import LocationResolver
from attendance_portal.notifications.service import (
    NotificationOutbox,
    NotificationService,
    notify_offpremises_approved,
    notify_offpremises_rejected,
    notify_offpremises_request,
    notify_offpremises_reverted,
)
from attendance_portal.offpremises.models import OffPremisesRequest
from attendance_portal.offpremises.schemas import (
    OffPremisesRequestResponse,
    OffPremisesSubmitRequest,
)

logger = logging.getLogger(__name__)


def _request_snapshot(req: OffPremisesRequest) -> dict[str, Any]:
    return {
        "status": req.status.value,
        "approved_by_id": str(req.approved_by_id) if req.approved_by_id else None,
        "approved_at": req.approved_at.isoformat() if req.approved_at else None,
        "rejection_reason": req.rejection_reason,
        "linked_attendance_record_id": (
            str(req.linked_attendance_record_id) if req.linked_attendance_record_id else None
        ),
    }


# ═════════════════════════════════════════════════════════════════════
# OffPremisesService
# ═════════════════════════════════════════════════════════════════════


class OffPremisesService:

    # ── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _authorize(approver: CurrentUser, requester: StaffProfile) -> None:
        """Approver role required; department heads are scoped to their department."""
        if approver.role not in APPROVER_ROLES:
            raise AuthorizationError(
                "Only department heads, regional managers and admins can review "
                "off-premises requests.",
            )
        if approver.role == UserRole.department_head and (
            approver.department_id is None
            or approver.department_id != requester.department_id
        ):
            raise AuthorizationError(
                "Department heads can only review requests from staff in their own department.",
            )

    @staticmethod
    async def _load_for_update(
        db: AsyncSession,
        request_id: uuid.UUID,
    ) -> OffPremisesRequest:
        result = await db.execute(
            select(OffPremisesRequest)
            .where(OffPremisesRequest.id == request_id)
            .options(selectinload(OffPremisesRequest.requester))
            .with_for_update(of=OffPremisesRequest)
            .execution_options(populate_existing=True)
        )
        req = result.scalars().first()
        if req is None:
            raise NotFoundException("Off-premises request", request_id)
        return req

    @staticmethod
    async def _compare_and_set(
        db: AsyncSession,
        req: OffPremisesRequest,
        expected: OffPremisesStatus,
        requested: str,
        **values: Any,
    ) -> None:
        """Apply *values* only if the row is still in *expected* status."""
        values = {"updated_at": utcnow(), **values}
        result = await db.execute(
            update(OffPremisesRequest)
            .where(
                OffPremisesRequest.id == req.id,
                OffPremisesRequest.status == expected,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.refresh(req, attribute_names=["status"])
            raise InvalidStateTransitionError(req.status.value, requested)
        for key, value in values.items():
            set_committed_value(req, key, value)

    @staticmethod
    def _require_status(
        req: OffPremisesRequest,
        expected: OffPremisesStatus,
        requested: str,
    ) -> None:
        if req.status != expected:
            raise InvalidStateTransitionError(req.status.value, requested)

    # ── Submit ──────────────────────────────────────────────────────

    @staticmethod
    async def submit(
        db: AsyncSession,
        requester: CurrentUser,
        body: OffPremisesSubmitRequest,
        *,
        deduplicator: CheckInDeduplicator,
        outbox: NotificationOutbox,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> OffPremisesRequest:
        """Create a pending request plus a provisional record for today."""
        profile = requester.profile
        now = utcnow()
        today = attendance_day(now)

        async def _existing() -> Optional[AttendanceRecord]:
            return await AttendanceLedger.find_for_day(db, requester.id, today)

        existing = await _existing()
        if existing is not None:
            raise DuplicateSessionError(
                existing.check_in_time, check_out_time=existing.check_out_time,
            )

        fix = Coordinate(body.latitude, body.longitude)
        policy = await DeviceRadiusService.get_policy(db)
        assigned = profile.assigned_location
        classification = LocationResolver.classify(
            assigned.coordinate if assigned else None,
            fix,
            body.device_class,
            Direction.check_in,
            policy,
        )
        if classification.on_site:
            raise ValidationException({
                "location": [
                    f"You are within {round(classification.radius_m)} m of your assigned "
                    f"location. Check in directly instead of requesting approval.",
                ],
            })

        async with deduplicator.admit(requester.id, _existing):
            req = OffPremisesRequest(
                id=uuid.uuid4(),
                user_id=requester.id,
                latitude=body.latitude,
                longitude=body.longitude,
                accuracy=body.accuracy,
                location_name=body.location_name,
                google_maps_name=body.google_maps_name,
                device_info=body.device_info,
                device_class=body.device_class,
                reason=body.reason,
                status=OffPremisesStatus.pending,
                created_at=now,
                updated_at=now,
            )
            req.requester = profile
            db.add(req)
            await db.flush()

            record = await AttendanceLedger.open_session(
                db,
                user_id=requester.id,
                check_in_time=now,
                location=fix,
                device_class=body.device_class,
                approval_status=ApprovalStatus.pending_supervisor_approval,
                check_in_method=CheckMethod.remote_offpremises,
                location_name=body.location_name or body.google_maps_name,
                off_premises_request_id=req.id,
            )

            await create_audit_entry(
                db,
                action="offpremises_submit",
                entity_type="offpremises_request",
                entity_id=req.id,
                actor_id=requester.id,
                new_values={
                    "status": req.status.value,
                    "latitude": body.latitude,
                    "longitude": body.longitude,
                    "device_class": body.device_class.value,
                    "distance_m": (
                        round(classification.distance_m, 1)
                        if classification.distance_m is not None
                        else None
                    ),
                    "radius_m": classification.radius_m,
                    "provisional_record_id": str(record.id),
                },
                ip_address=ip_address,
                user_agent=user_agent,
            )

            approver_ids = await NotificationService.approver_ids_for(db, profile)
            notify_offpremises_request(outbox, req, profile, approver_ids)
            await db.commit()

        logger.info(
            "Off-premises request %s submitted by %s; %d approver(s) to notify",
            req.id,
            requester.id,
            len(approver_ids),
        )
        return req

    # ── Approve ─────────────────────────────────────────────────────

    @staticmethod
    async def approve(
        db: AsyncSession,
        request_id: uuid.UUID,
        approver: CurrentUser,
        *,
        outbox: NotificationOutbox,
        remarks: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> OffPremisesRequest:
        req = await OffPremisesService._load_for_update(db, request_id)
        OffPremisesService._authorize(approver, req.requester)
        OffPremisesService._require_status(req, OffPremisesStatus.pending, "approve")
        before = _request_snapshot(req)

        result = await db.execute(
            select(AttendanceRecord)
            .where(AttendanceRecord.off_premises_request_id == req.id)
            .with_for_update()
        )
        record = result.scalars().first()

        if record is not None and record.approval_status == ApprovalStatus.pending_supervisor_approval:
            record.approval_status = ApprovalStatus.approved_offpremises
            record.on_official_duty_outside_premises = True
            record.supervisor_approval_remarks = remarks
            await db.flush()
        else:
            # Provisional record is gone (e.g. after a revert); open a fresh one
            record = await AttendanceLedger.open_session(
                db,
                user_id=req.user_id,
                check_in_time=req.created_at,
                location=Coordinate(req.latitude, req.longitude),
                device_class=req.device_class,
                approval_status=ApprovalStatus.approved_offpremises,
                check_in_method=CheckMethod.remote_offpremises,
                location_name=req.location_name or req.google_maps_name,
                off_premises_request_id=req.id,
                on_official_duty_outside_premises=True,
            )
            record.supervisor_approval_remarks = remarks

        await OffPremisesService._compare_and_set(
            db,
            req,
            OffPremisesStatus.pending,
            "approve",
            status=OffPremisesStatus.approved,
            approved_by_id=approver.id,
            approved_at=utcnow(),
            rejection_reason=None,
            linked_attendance_record_id=record.id,
        )

        await create_audit_entry(
            db,
            action="offpremises_approve",
            entity_type="offpremises_request",
            entity_id=req.id,
            actor_id=approver.id,
            old_values=before,
            new_values={**_request_snapshot(req), "remarks": remarks},
            ip_address=ip_address,
        )
        notify_offpremises_approved(outbox, req)
        await db.commit()

        logger.info("Off-premises request %s approved by %s", req.id, approver.id)
        return req

    # ── Reject ──────────────────────────────────────────────────────

    @staticmethod
    async def reject(
        db: AsyncSession,
        request_id: uuid.UUID,
        approver: CurrentUser,
        *,
        outbox: NotificationOutbox,
        rejection_reason: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> OffPremisesRequest:
        req = await OffPremisesService._load_for_update(db, request_id)
        OffPremisesService._authorize(approver, req.requester)
        OffPremisesService._require_status(req, OffPremisesStatus.pending, "reject")
        before = _request_snapshot(req)

        reason = (rejection_reason or "").strip() or DEFAULT_REJECTION_REASON
        discarded = await AttendanceLedger.discard_provisional(db, req.id)

        await OffPremisesService._compare_and_set(
            db,
            req,
            OffPremisesStatus.pending,
            "reject",
            status=OffPremisesStatus.rejected,
            rejection_reason=reason,
        )

        await create_audit_entry(
            db,
            action="offpremises_reject",
            entity_type="offpremises_request",
            entity_id=req.id,
            actor_id=approver.id,
            old_values=before,
            new_values={
                **_request_snapshot(req),
                "reviewed_by_id": str(approver.id),
                "reviewed_at": utcnow().isoformat(),
                "provisional_records_discarded": discarded,
            },
            ip_address=ip_address,
        )
        notify_offpremises_rejected(outbox, req)
        await db.commit()

        logger.info("Off-premises request %s rejected by %s", req.id, approver.id)
        return req

    # ── Revert ──────────────────────────────────────────────────────

    @staticmethod
    async def revert(
        db: AsyncSession,
        request_id: uuid.UUID,
        approver: CurrentUser,
        *,
        outbox: NotificationOutbox,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> OffPremisesRequest:
        """Undo a mistaken approval: delete its record, back to pending."""
        req = await OffPremisesService._load_for_update(db, request_id)
        OffPremisesService._authorize(approver, req.requester)
        OffPremisesService._require_status(req, OffPremisesStatus.approved, "revert")
        before = _request_snapshot(req)
        linked_id = req.linked_attendance_record_id

        await OffPremisesService._compare_and_set(
            db,
            req,
            OffPremisesStatus.approved,
            "revert",
            status=OffPremisesStatus.pending,
            approved_by_id=None,
            approved_at=None,
            rejection_reason=None,
            linked_attendance_record_id=None,
        )

        deleted_record = None
        if linked_id is not None:
            deleted_record = await AttendanceLedger.revert_approved_offpremises(db, linked_id)

        await create_audit_entry(
            db,
            action="offpremises_revert",
            entity_type="offpremises_request",
            entity_id=req.id,
            actor_id=approver.id,
            old_values={**before, "attendance_record": deleted_record},
            new_values={**_request_snapshot(req), "reason": reason},
            ip_address=ip_address,
        )
        notify_offpremises_reverted(outbox, req)
        await db.commit()

        logger.warning(
            "Off-premises approval %s reverted by %s; attendance record %s deleted",
            req.id,
            approver.id,
            linked_id,
        )
        return req

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    async def list_pending(
        db: AsyncSession,
        approver: CurrentUser,
        params: PaginationParams,
    ) -> PaginatedResponse:
        """Pending requests the approver may act on, oldest first."""
        query = (
            select(OffPremisesRequest)
            .join(StaffProfile, StaffProfile.id == OffPremisesRequest.user_id)
            .where(OffPremisesRequest.status == OffPremisesStatus.pending)
            .order_by(OffPremisesRequest.created_at.asc())
        )
        if approver.role == UserRole.department_head:
            query = query.where(StaffProfile.department_id == approver.department_id)

        return await paginate(
            db,
            query,
            params,
            model=OffPremisesRequest,
            transform=OffPremisesRequestResponse.model_validate,
            options=[selectinload(OffPremisesRequest.requester)],
        )

    @staticmethod
    async def list_reviewed(
        db: AsyncSession,
        approver: CurrentUser,
        params: PaginationParams,
        status: Optional[OffPremisesStatus] = None,
    ) -> PaginatedResponse:
        """Decided requests, most recently changed first; the revert queue for approvers."""
        if status == OffPremisesStatus.pending:
            raise ValidationException({
                "status": ["Use the pending queue for undecided requests."],
            })
        decided = [status] if status else [OffPremisesStatus.approved, OffPremisesStatus.rejected]

        query = (
            select(OffPremisesRequest)
            .join(StaffProfile, StaffProfile.id == OffPremisesRequest.user_id)
            .where(OffPremisesRequest.status.in_(decided))
            .order_by(OffPremisesRequest.updated_at.desc())
        )
        if approver.role == UserRole.department_head:
            query = query.where(StaffProfile.department_id == approver.department_id)

        return await paginate(
            db,
            query,
            params,
            model=OffPremisesRequest,
            transform=OffPremisesRequestResponse.model_validate,
            options=[selectinload(OffPremisesRequest.requester)],
        )

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        user_id: uuid.UUID,
    ) -> list[OffPremisesRequest]:
        result = await db.execute(
            select(OffPremisesRequest)
            .where(OffPremisesRequest.user_id == user_id)
            .options(selectinload(OffPremisesRequest.requester))
            .order_by(OffPremisesRequest.created_at.desc())
        )
        return list(result.scalars().all())
