from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import cast

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.activity.descriptions import ActivityActionType, ActivityEntityKind
from app.activity.service import ActivityRecorder
from app.context import get_correlation_id
from app.core.config import get_settings
from app.crm.gateway import CrmGateway, CrmGatewayError, LeadSnapshot, SqlCrmGateway
from app.metrics import observe_reassignment_transition
from app.notifications.errors import (
    ApprovalForbiddenError,
    EntityMutationError,
    InvalidApprovalMetadataError,
    InvalidReassignmentRequestError,
    LeadNotFoundError,
    NotApprovalNoticeError,
    NoticeNotFoundError,
    ReassignmentPendingError,
)
from app.notifications.models import Notice
from app.notifications.repository import NoticeStore
from app.notifications.schemas import NoticeType, ReassignmentRequestedMetadata, Resolution, parse_metadata
from app.notifications.service import NotificationService


logger = logging.getLogger("app.notifications.approvals")
tracer = trace.get_tracer("app.notifications.approvals")


@dataclass
class ApprovalResult:
    notice_id: uuid.UUID
    outcome: Resolution
    already_resolved: bool = False
    follow_up_notice_ids: list[uuid.UUID] = field(default_factory=list)


class ReassignmentWorkflow:
    """Two-party approval of a lead owner change, carried by a notice.

    A ``reassignment_requested`` notice is the pending token. Approving or
    rejecting it claims the notice with a conditional update in the same
    transaction as the lead mutation, so a repeated or concurrent call finds
    the notice already resolved and reports success without touching the lead.
    Follow-up notices are sent only after that transaction commits.
    """

    def __init__(
        self,
        notifications: NotificationService | None = None,
        gateway_factory: Callable[[Session], CrmGateway] = SqlCrmGateway,
        activity: ActivityRecorder | None = None,
    ) -> None:
        self.notifications = notifications or NotificationService()
        self.gateway_factory = gateway_factory
        self.activity = activity or ActivityRecorder(
            notifications=self.notifications,
            gateway_factory=gateway_factory,
            clock=self.notifications.clock,
        )

    @property
    def store(self) -> NoticeStore:
        return self.notifications.store

    def request_reassignment(
        self,
        session: Session,
        lead_id: str,
        requesting_user_id: str,
        requested_assignee_id: str,
        reason: str | None = None,
    ) -> list[uuid.UUID]:
        gateway = self.gateway_factory(session)
        lead = gateway.get_lead(lead_id)
        if lead is None:
            raise LeadNotFoundError("lead not found", {"lead_id": lead_id})
        if lead.reassignment_pending:
            raise ReassignmentPendingError(
                "a reassignment is already pending for this lead",
                {"lead_id": lead.id, "requested_by": lead.reassignment_requested_by},
            )
        if requested_assignee_id == lead.owner_user_id:
            raise InvalidReassignmentRequestError(
                "requested assignee already owns the lead",
                {"lead_id": lead.id, "requested_assignee_id": requested_assignee_id},
            )
        recipients = self._request_recipients(gateway, requesting_user_id, requested_assignee_id)
        if not recipients:
            raise InvalidReassignmentRequestError(
                "no approver available for this request",
                {"lead_id": lead.id, "requested_assignee_id": requested_assignee_id},
            )

        try:
            gateway.mark_reassignment_pending(lead.id, requesting_user_id)
            session.commit()
        except (CrmGatewayError, SQLAlchemyError) as exc:
            session.rollback()
            observe_reassignment_transition("failed")
            raise EntityMutationError("could not mark the lead as pending reassignment", {"lead_id": lead.id}) from exc

        requester_name = gateway.display_name(requesting_user_id)
        assignee_name = gateway.display_name(requested_assignee_id, default="team member")
        notice_ids: list[uuid.UUID] = []
        for recipient_id in recipients:
            draft = self.notifications.generator.reassignment_requested(
                recipient_id,
                lead_id=lead.id,
                lead_name=lead.display_name,
                requesting_user_id=requesting_user_id,
                requesting_user_name=requester_name,
                requested_assignee_id=requested_assignee_id,
                requested_user_name=assignee_name,
                reason=reason,
                current_owner_id=lead.owner_user_id,
            )
            notice_id = self.notifications.create_notice(session, draft)
            if notice_id is not None:
                notice_ids.append(notice_id)

        if not notice_ids:
            # Without a pending notice nobody could ever resolve the marker.
            self._release_marker(session, gateway, lead.id)
            observe_reassignment_transition("failed")
            raise EntityMutationError(
                "could not deliver the reassignment request; the lead was left unchanged",
                {"lead_id": lead.id},
            )

        self.activity.record(
            session,
            actor_id=requesting_user_id,
            action_type=ActivityActionType.LEAD_REASSIGNMENT_REQUESTED,
            entity_kind=ActivityEntityKind.LEAD,
            entity_id=lead.id,
            entity_title=lead.display_name,
            metadata={
                "requested_user_id": requested_assignee_id,
                "requested_user_name": assignee_name,
                "reason": reason,
            },
        )

        observe_reassignment_transition("requested")
        logger.info(
            "reassignment.requested",
            extra={"entity_id": lead.id, "recipient_id": requested_assignee_id, "outcome": "requested"},
        )
        return notice_ids

    def approve(self, session: Session, notice_id: uuid.UUID, actor_id: str) -> ApprovalResult:
        with tracer.start_as_current_span("notifications.reassignment.approve") as span:
            span.set_attribute("notice_id", str(notice_id))
            span.set_attribute("correlation_id", get_correlation_id() or "")
            notice = self._load_actionable(session, notice_id, actor_id)
            if notice.resolution is not None:
                return self._already_resolved(notice)
            metadata = self._parse_request(notice)
            gateway = self.gateway_factory(session)

            try:
                if not self.store.claim_resolution(session, notice.id, "approved", actor_id):
                    session.rollback()
                    return self._already_resolved(self._reload(session, notice.id))
                previous = gateway.get_lead(metadata.lead_id)
                lead = gateway.assign_lead_owner(metadata.lead_id, metadata.requested_assignee_id)
                self.store.resolve_pending_siblings(
                    session, notice.id, NoticeType.REASSIGNMENT_REQUESTED, metadata.lead_id, "approved", actor_id
                )
                session.commit()
            except (CrmGatewayError, SQLAlchemyError) as exc:
                session.rollback()
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise self._mutation_error(notice.id, metadata.lead_id, exc) from exc

            observe_reassignment_transition("approved")
            logger.info(
                "reassignment.approved",
                extra={"notice_id": str(notice.id), "entity_id": lead.id, "outcome": "approved"},
            )

            new_owner_name = gateway.display_name(metadata.requested_assignee_id, default="team member")
            self.activity.record(
                session,
                actor_id=actor_id,
                action_type=ActivityActionType.LEAD_REASSIGNED,
                entity_kind=ActivityEntityKind.LEAD,
                entity_id=lead.id,
                entity_title=lead.display_name,
                metadata={
                    "from_assignee": gateway.display_name(previous.owner_user_id if previous else None, default="Unknown"),
                    "to_assignee": new_owner_name,
                    "notice_id": str(notice.id),
                },
            )

            follow_ups = self._send_approved_notices(session, lead, metadata, new_owner_name, actor_id)
            return ApprovalResult(notice_id=notice.id, outcome="approved", follow_up_notice_ids=follow_ups)

    def reject(
        self,
        session: Session,
        notice_id: uuid.UUID,
        actor_id: str,
        reason: str | None = None,
    ) -> ApprovalResult:
        with tracer.start_as_current_span("notifications.reassignment.reject") as span:
            span.set_attribute("notice_id", str(notice_id))
            span.set_attribute("correlation_id", get_correlation_id() or "")
            notice = self._load_actionable(session, notice_id, actor_id)
            if notice.resolution is not None:
                return self._already_resolved(notice)
            metadata = self._parse_request(notice)
            gateway = self.gateway_factory(session)

            try:
                if not self.store.claim_resolution(session, notice.id, "rejected", actor_id):
                    session.rollback()
                    return self._already_resolved(self._reload(session, notice.id))
                # A lead deleted since the request has no marker left to clear.
                lead = gateway.clear_reassignment_marker(metadata.lead_id)
                self.store.resolve_pending_siblings(
                    session, notice.id, NoticeType.REASSIGNMENT_REQUESTED, metadata.lead_id, "rejected", actor_id
                )
                session.commit()
            except (CrmGatewayError, SQLAlchemyError) as exc:
                session.rollback()
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise self._mutation_error(notice.id, metadata.lead_id, exc) from exc

            observe_reassignment_transition("rejected")
            logger.info(
                "reassignment.rejected",
                extra={"notice_id": str(notice.id), "entity_id": metadata.lead_id, "outcome": "rejected", "reason": reason},
            )

            follow_ups: list[uuid.UUID] = []
            if metadata.requesting_user_id != actor_id:
                lead_name = lead.display_name if lead is not None else (metadata.lead_name or "lead")
                draft = self.notifications.generator.reassignment_rejected(
                    metadata.requesting_user_id,
                    lead_id=metadata.lead_id,
                    lead_name=lead_name,
                    rejected_by=actor_id,
                    reason=reason,
                )
                created = self.notifications.create_notice(session, draft)
                if created is not None:
                    follow_ups.append(created)
            return ApprovalResult(notice_id=notice.id, outcome="rejected", follow_up_notice_ids=follow_ups)

    def _request_recipients(self, gateway: CrmGateway, requesting_user_id: str, requested_assignee_id: str) -> list[str]:
        recipients = [requested_assignee_id] if requested_assignee_id != requesting_user_id else []
        if get_settings().reassignment_notify_admins:
            tenant_id = gateway.tenant_for_user(requesting_user_id)
            for admin_id in gateway.admin_user_ids(tenant_id):
                if admin_id not in recipients and admin_id != requesting_user_id:
                    recipients.append(admin_id)
        return recipients

    def _release_marker(self, session: Session, gateway: CrmGateway, lead_id: str) -> None:
        try:
            gateway.clear_reassignment_marker(lead_id)
            session.commit()
        except (CrmGatewayError, SQLAlchemyError) as exc:
            session.rollback()
            logger.warning(
                "reassignment.marker_release_failed",
                extra={"entity_id": lead_id, "error": f"{type(exc).__name__}: {exc}"},
            )

    def _load_actionable(self, session: Session, notice_id: uuid.UUID, actor_id: str) -> Notice:
        notice = self.store.get(session, notice_id)
        if notice is None:
            raise NoticeNotFoundError("notice not found", {"notice_id": str(notice_id)})
        if notice.notice_type != NoticeType.REASSIGNMENT_REQUESTED:
            raise NotApprovalNoticeError(
                "notice is not an approval request",
                {"notice_id": str(notice_id), "notice_type": notice.notice_type},
            )
        if notice.recipient_id != actor_id:
            raise ApprovalForbiddenError("only the notice recipient can resolve it", {"notice_id": str(notice_id)})
        return notice

    def _parse_request(self, notice: Notice) -> ReassignmentRequestedMetadata:
        try:
            metadata = parse_metadata(NoticeType.REASSIGNMENT_REQUESTED, notice.metadata_json)
        except ValueError as exc:
            raise InvalidApprovalMetadataError(
                "reassignment request is missing required metadata",
                {"notice_id": str(notice.id), "error": str(exc)},
            ) from exc
        return cast(ReassignmentRequestedMetadata, metadata)

    def _reload(self, session: Session, notice_id: uuid.UUID) -> Notice:
        notice = self.store.get(session, notice_id)
        if notice is None:
            raise NoticeNotFoundError("notice not found", {"notice_id": str(notice_id)})
        return notice

    def _already_resolved(self, notice: Notice) -> ApprovalResult:
        observe_reassignment_transition("already_resolved")
        logger.info(
            "reassignment.already_resolved",
            extra={"notice_id": str(notice.id), "outcome": notice.resolution},
        )
        return ApprovalResult(notice_id=notice.id, outcome=notice.resolution, already_resolved=True)

    def _mutation_error(self, notice_id: uuid.UUID, lead_id: str, exc: Exception) -> EntityMutationError:
        observe_reassignment_transition("failed")
        logger.warning(
            "reassignment.mutation_failed",
            extra={"notice_id": str(notice_id), "entity_id": lead_id, "error": f"{type(exc).__name__}: {exc}"},
        )
        return EntityMutationError("lead update failed; the request is still pending", {"lead_id": lead_id})

    def _send_approved_notices(
        self,
        session: Session,
        lead: LeadSnapshot,
        metadata: ReassignmentRequestedMetadata,
        new_owner_name: str,
        actor_id: str,
    ) -> list[uuid.UUID]:
        recipients = [metadata.requesting_user_id]
        new_owner_id = metadata.requested_assignee_id
        if new_owner_id not in (metadata.requesting_user_id, actor_id):
            recipients.append(new_owner_id)

        created: list[uuid.UUID] = []
        for recipient_id in recipients:
            draft = self.notifications.generator.reassignment_approved(
                recipient_id,
                lead_id=lead.id,
                lead_name=lead.display_name,
                new_owner_id=new_owner_id,
                new_owner_name=new_owner_name,
                approved_by=actor_id,
            )
            notice_id = self.notifications.create_notice(session, draft)
            if notice_id is not None:
                created.append(notice_id)
        return created
