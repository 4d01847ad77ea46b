"""Notification service — persistence, post-commit outbox, workflow helper dispatchers."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from attendance_portal.common.constants import NotificationType, UserRole
from attendance_portal.core_hr.models import StaffProfile
from attendance_portal.database import async_session_factory
from attendance_portal.notifications.models import Notification

logger = logging.getLogger(__name__)


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async notification operations."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        recipient_id: uuid.UUID,
        type: NotificationType,
        title: str,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> Notification:
        """Create a new notification and flush to DB."""
        notification = Notification(
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            entity_type=entity_type,
            entity_id=entity_id,
            data=data,
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def list_for_recipient(
        db: AsyncSession,
        recipient_id: uuid.UUID,
    ) -> list[Notification]:
        result = await db.execute(
            select(Notification)
            .where(Notification.recipient_id == recipient_id)
            .order_by(Notification.created_at.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def approver_ids_for(
        db: AsyncSession,
        requester: StaffProfile,
    ) -> list[uuid.UUID]:
        """Active admins, regional managers and the requester's department heads."""
        conditions = [StaffProfile.role.in_([UserRole.admin, UserRole.regional_manager])]
        if requester.department_id is not None:
            conditions.append(
                (StaffProfile.role == UserRole.department_head)
                & (StaffProfile.department_id == requester.department_id)
            )
        result = await db.execute(
            select(StaffProfile.id).where(
                StaffProfile.is_active.is_(True),
                StaffProfile.id != requester.id,
                or_(*conditions),
            )
        )
        return list(result.scalars().all())


# ── Post-commit outbox ──────────────────────────────────────────────
# Services queue events while the transaction is open; routers schedule
# ``dispatch`` as a background task so rows are written only after the
# triggering state change has committed. Delivery is best-effort.


@dataclass
class PendingNotification:
    recipient_id: uuid.UUID
    type: NotificationType
    title: str
    message: str
    entity_type: Optional[str] = None
    entity_id: Optional[uuid.UUID] = None
    data: Optional[dict[str, Any]] = None


@dataclass
class NotificationOutbox:
    session_factory: async_sessionmaker[AsyncSession] = async_session_factory
    pending: list[PendingNotification] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.pending)

    def add(self, notification: PendingNotification) -> None:
        self.pending.append(notification)

    async def dispatch(self) -> int:
        """Write queued notifications in their own transaction. Returns count written."""
        if not self.pending:
            return 0

        queued, self.pending = self.pending, []
        try:
            async with self.session_factory() as db:
                for item in queued:
                    await NotificationService.create_notification(
                        db,
                        recipient_id=item.recipient_id,
                        type=item.type,
                        title=item.title,
                        message=item.message,
                        entity_type=item.entity_type,
                        entity_id=item.entity_id,
                        data=item.data,
                    )
                await db.commit()
        except Exception:
            logger.exception("Failed to deliver %d notification(s)", len(queued))
            return 0

        logger.debug("Delivered %d notification(s)", len(queued))
        return len(queued)


# ── Workflow helper dispatchers ─────────────────────────────────────
# Imported by the off-premises workflow; they take the ORM objects directly.


def notify_offpremises_request(
    outbox: NotificationOutbox,
    request,  # attendance_portal.offpremises.models.OffPremisesRequest
    requester: StaffProfile,
    approver_ids: list[uuid.UUID],
) -> None:
    """Tell every eligible approver that an off-premises check-in needs review."""
    place = request.location_name or request.google_maps_name or (
        f"{request.latitude:.5f}, {request.longitude:.5f}"
    )
    for approver_id in approver_ids:
        outbox.add(
            PendingNotification(
                recipient_id=approver_id,
                type=NotificationType.offpremises_checkin_request,
                title="Off-Premises Check-In Request",
                message=(
                    f"{requester.display_name} requested to check in from {place}."
                    + (f" Reason: {request.reason}" if request.reason else "")
                ),
                entity_type="offpremises_request",
                entity_id=request.id,
                data={
                    "request_id": str(request.id),
                    "user_id": str(requester.id),
                    "latitude": request.latitude,
                    "longitude": request.longitude,
                    "device_class": request.device_class.value,
                },
            )
        )


def notify_offpremises_approved(outbox: NotificationOutbox, request) -> None:
    outbox.add(
        PendingNotification(
            recipient_id=request.user_id,
            type=NotificationType.offpremises_checkin_approved,
            title="Off-Premises Check-In Approved",
            message="Your off-premises check-in was approved. You are checked in for today.",
            entity_type="offpremises_request",
            entity_id=request.id,
            data={
                "request_id": str(request.id),
                "attendance_record_id": str(request.linked_attendance_record_id),
            },
        )
    )


def notify_offpremises_rejected(outbox: NotificationOutbox, request) -> None:
    outbox.add(
        PendingNotification(
            recipient_id=request.user_id,
            type=NotificationType.offpremises_checkin_rejected,
            title="Off-Premises Check-In Rejected",
            message=f"Your off-premises check-in was rejected. Reason: {request.rejection_reason}",
            entity_type="offpremises_request",
            entity_id=request.id,
            data={"request_id": str(request.id), "reason": request.rejection_reason},
        )
    )


def notify_offpremises_reverted(outbox: NotificationOutbox, request) -> None:
    outbox.add(
        PendingNotification(
            recipient_id=request.user_id,
            type=NotificationType.offpremises_approval_reverted,
            title="Off-Premises Approval Reverted",
            message=(
                "The approval of your off-premises check-in was reverted and the "
                "request is pending review again. Your check-in for that day was removed."
            ),
            entity_type="offpremises_request",
            entity_id=request.id,
            data={"request_id": str(request.id)},
        )
    )
