"""Off-premises router — submit, review (approve / reject / revert), listings.

Notifications queued by the workflow are written by a background task once
the transition has committed.
"""


import uuid
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_portal.attendance.admission import CheckInDeduplicator
from attendance_portal.auth.dependencies import CurrentUser, get_current_user, require_role
from attendance_portal.common.constants import APPROVER_ROLES, OffPremisesStatus
from attendance_portal.common.pagination import PaginatedResponse, PaginationParams
from attendance_portal.common.rate_limit import limiter
from attendance_portal.database import get_db
from attendance_portal.dependencies import get_deduplicator, get_notification_outbox
from attendance_portal.notifications.service import NotificationOutbox
from attendance_portal.offpremises.schemas import (
    OffPremisesActionResponse,
    OffPremisesApproveRequest,
    OffPremisesRejectRequest,
    OffPremisesRequestResponse,
    OffPremisesRevertRequest,
    OffPremisesSubmitRequest,
)
from attendance_portal.offpremises.service import OffPremisesService

router = APIRouter(prefix="", tags=["offpremises"])

require_approver = require_role(*sorted(APPROVER_ROLES, key=lambda r: r.value))


def _ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


# ── POST /submit ────────────────────────────────────────────────────

@router.post("/submit", response_model=OffPremisesActionResponse, status_code=201)
@limiter.limit("10/minute")
async def submit(
    request: Request,
    body: OffPremisesSubmitRequest,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    deduplicator: CheckInDeduplicator = Depends(get_deduplicator),
    outbox: NotificationOutbox = Depends(get_notification_outbox),
    db: AsyncSession = Depends(get_db),
):
    """Request approval to check in from outside the geofence."""
    req = await OffPremisesService.submit(
        db,
        user,
        body,
        deduplicator=deduplicator,
        outbox=outbox,
        ip_address=_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    background_tasks.add_task(outbox.dispatch)
    return OffPremisesActionResponse(
        message="Off-premises check-in submitted for supervisor approval",
        data=OffPremisesRequestResponse.model_validate(req),
    )


# ── GET /pending (approver queue) ──────────────────────────────────
# NOTE: /pending, /reviewed and /mine are registered before the /{request_id} routes.

@router.get("/pending", response_model=PaginatedResponse[OffPremisesRequestResponse])
async def list_pending(
    pagination: PaginationParams = Depends(),
    approver: CurrentUser = Depends(require_approver),
    db: AsyncSession = Depends(get_db),
):
    return await OffPremisesService.list_pending(db, approver, pagination)


# ── GET /reviewed (approved / rejected history) ─────────────────

@router.get("/reviewed", response_model=PaginatedResponse[OffPremisesRequestResponse])
async def list_reviewed(
    status: Optional[OffPremisesStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    approver: CurrentUser = Depends(require_approver),
    db: AsyncSession = Depends(get_db),
):
    return await OffPremisesService.list_reviewed(db, approver, pagination, status)


# ── GET /mine (requester history) ──────────────────────────────────

@router.get("/mine", response_model=list[OffPremisesRequestResponse])
async def list_mine(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    rows = await OffPremisesService.list_for_user(db, user.id)
    return [OffPremisesRequestResponse.model_validate(r) for r in rows]


# ── POST /{request_id}/approve ──────────────────────────────────────

@router.post("/{request_id}/approve", response_model=OffPremisesActionResponse)
async def approve(
    request_id: uuid.UUID,
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[OffPremisesApproveRequest] = None,
    approver: CurrentUser = Depends(get_current_user),
    outbox: NotificationOutbox = Depends(get_notification_outbox),
    db: AsyncSession = Depends(get_db),
):
    req = await OffPremisesService.approve(
        db,
        request_id,
        approver,
        outbox=outbox,
        remarks=body.remarks if body else None,
        ip_address=_ip(request),
    )
    background_tasks.add_task(outbox.dispatch)
    return OffPremisesActionResponse(
        message="Off-premises check-in approved",
        data=OffPremisesRequestResponse.model_validate(req),
    )


# ── POST /{request_id}/reject ───────────────────────────────────────

@router.post("/{request_id}/reject", response_model=OffPremisesActionResponse)
async def reject(
    request_id: uuid.UUID,
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[OffPremisesRejectRequest] = None,
    approver: CurrentUser = Depends(get_current_user),
    outbox: NotificationOutbox = Depends(get_notification_outbox),
    db: AsyncSession = Depends(get_db),
):
    req = await OffPremisesService.reject(
        db,
        request_id,
        approver,
        outbox=outbox,
        rejection_reason=body.rejection_reason if body else None,
        ip_address=_ip(request),
    )
    background_tasks.add_task(outbox.dispatch)
    return OffPremisesActionResponse(
        message="Off-premises check-in rejected",
        data=OffPremisesRequestResponse.model_validate(req),
    )


# ── POST /{request_id}/revert ───────────────────────────────────────

@router.post("/{request_id}/revert", response_model=OffPremisesActionResponse)
async def revert(
    request_id: uuid.UUID,
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[OffPremisesRevertRequest] = None,
    approver: CurrentUser = Depends(get_current_user),
    outbox: NotificationOutbox = Depends(get_notification_outbox),
    db: AsyncSession = Depends(get_db),
):
    req = await OffPremisesService.revert(
        db,
        request_id,
        approver,
        outbox=outbox,
        reason=body.reason if body else None,
        ip_address=_ip(request),
    )
    background_tasks.add_task(outbox.dispatch)
    return OffPremisesActionResponse(
        message="Approval reverted; request is pending again",
        data=OffPremisesRequestResponse.model_validate(req),
    )
