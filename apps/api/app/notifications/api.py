from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.context import get_correlation_id
from app.core.auth import ActorUser, get_current_actor
from app.core.database import get_db
from app.notifications.approvals import ApprovalResult, ReassignmentWorkflow
from app.notifications.errors import ApprovalError
from app.notifications.maintenance import NoticeMaintenance
from app.notifications.reminders import ReminderScanService
from app.notifications.schemas import (
    ApprovalResultRead,
    BulkActionResult,
    CleanupRequest,
    CleanupResult,
    NoticeCreate,
    NoticeCreateResult,
    NoticeRead,
    ReassignmentRequestCreate,
    ReassignmentRequestResult,
    RejectReassignmentRequest,
    UnreadCountRead,
)
from app.notifications.service import NotificationService

router = APIRouter(prefix="/api/notifications", tags=["notifications"])
leads_router = APIRouter(prefix="/api/leads", tags=["notifications.reassignment"])
notification_service = NotificationService()
maintenance = NoticeMaintenance(notification_service.store)
reminder_scans = ReminderScanService(notification_service)
workflow = ReassignmentWorkflow(notification_service)


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(code=code, message=message, details=details, correlation_id=correlation_id)
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def approval_error_response(request: Request, exc: ApprovalError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


def _to_result_read(result: ApprovalResult) -> ApprovalResultRead:
    return ApprovalResultRead(
        notice_id=result.notice_id,
        outcome=result.outcome,
        already_resolved=result.already_resolved,
        follow_up_notice_ids=result.follow_up_notice_ids,
    )


@router.get("", response_model=list[NoticeRead])
def list_notices(
    limit: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> list[NoticeRead]:
    rows = notification_service.list_notices(db, user.user_id, limit)
    return [NoticeRead.from_model(row) for row in rows]


@router.get("/unread-count", response_model=UnreadCountRead)
def unread_count(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> UnreadCountRead:
    return UnreadCountRead(unread=notification_service.unread_count(db, user.user_id))


@router.post("", response_model=NoticeCreateResult, status_code=status.HTTP_201_CREATED)
def create_notice(
    request: Request,
    response: Response,
    dto: NoticeCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> NoticeCreateResult | JSONResponse:
    try:
        notice_id = notification_service.create(
            db,
            notice_type=dto.type,
            recipient_id=user.user_id,
            title=dto.title,
            message=dto.message,
            entity_kind=dto.entity_kind,
            entity_id=dto.entity_id,
            priority=dto.priority,
            action_ref=dto.action_ref,
            metadata=dto.metadata,
        )
    except ValueError as exc:
        return error_response(
            request,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="invalid_metadata",
            message=str(exc),
            details={"type": dto.type.value},
        )
    if notice_id is None:
        response.status_code = status.HTTP_200_OK
        return NoticeCreateResult(created=False)
    return NoticeCreateResult(created=True, notice_id=notice_id)


@router.post("/read-all", response_model=BulkActionResult)
def mark_all_read(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> BulkActionResult:
    return BulkActionResult(success=notification_service.mark_all_read(db, user.user_id))


@router.delete("", response_model=BulkActionResult)
def clear_all(
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> BulkActionResult:
    return BulkActionResult(success=notification_service.clear_all(db, user.user_id))


@router.post("/cleanup", response_model=CleanupResult)
def cleanup(
    dto: CleanupRequest | None = None,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> CleanupResult:
    dto = dto or CleanupRequest()
    duplicates: int | None = 0
    stale: int | None = 0
    if dto.scope in ("all", "duplicates"):
        duplicates = maintenance.cleanup_duplicates(db, user.user_id, dto.type, dto.entity_id)
    if dto.scope in ("all", "stale"):
        stale = reminder_scans.cleanup_stale_reminders(db, user.user_id)
    return CleanupResult(
        success=duplicates is not None and stale is not None,
        duplicates_removed=duplicates or 0,
        stale_removed=stale or 0,
    )


@router.post("/{notice_id}/read", response_model=BulkActionResult)
def mark_read(
    notice_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> BulkActionResult:
    return BulkActionResult(success=notification_service.mark_read(db, notice_id, user.user_id))


@router.post("/{notice_id}/approve", response_model=ApprovalResultRead)
def approve_reassignment(
    request: Request,
    notice_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> ApprovalResultRead | JSONResponse:
    try:
        return _to_result_read(workflow.approve(db, notice_id, user.user_id))
    except ApprovalError as exc:
        return approval_error_response(request, exc)


@router.post("/{notice_id}/reject", response_model=ApprovalResultRead)
def reject_reassignment(
    request: Request,
    notice_id: uuid.UUID,
    dto: RejectReassignmentRequest | None = None,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> ApprovalResultRead | JSONResponse:
    try:
        return _to_result_read(workflow.reject(db, notice_id, user.user_id, dto.reason if dto else None))
    except ApprovalError as exc:
        return approval_error_response(request, exc)


@leads_router.post(
    "/{lead_id}/reassignment-requests",
    response_model=ReassignmentRequestResult,
    status_code=status.HTTP_201_CREATED,
)
def request_reassignment(
    request: Request,
    lead_id: str,
    dto: ReassignmentRequestCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_actor),
) -> ReassignmentRequestResult | JSONResponse:
    try:
        notice_ids = workflow.request_reassignment(
            db,
            lead_id,
            requesting_user_id=user.user_id,
            requested_assignee_id=dto.requested_assignee_id,
            reason=dto.reason,
        )
    except ApprovalError as exc:
        return approval_error_response(request, exc)
    return ReassignmentRequestResult(lead_id=lead_id, notice_ids=notice_ids)
