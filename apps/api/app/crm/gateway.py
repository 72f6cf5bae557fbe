from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Protocol

from opentelemetry import trace
from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from app.context import get_correlation_id
from app.crm.models import CRMDeal, CRMLead, CRMTask, CRMUserProfile, utcnow


tracer = trace.get_tracer("app.crm.gateway")

CLOSED_DEAL_STAGES = ("won", "lost")
COMPLETED_TASK_STATUS = "completed"


class CrmGatewayError(Exception):
    pass


@dataclass(frozen=True)
class LeadSnapshot:
    id: str
    display_name: str
    owner_user_id: str | None
    reassignment_pending: bool
    reassignment_requested_by: str | None


@dataclass(frozen=True)
class DealSnapshot:
    id: str
    title: str
    stage: str
    value: Decimal
    owner_user_id: str | None
    close_date: date | None


@dataclass(frozen=True)
class TaskSnapshot:
    id: str
    title: str
    kind: str
    status: str
    assigned_to_user_id: str | None
    created_by_user_id: str | None
    due_date: date | None
    start_time: time | None

    @property
    def recipient_id(self) -> str | None:
        return self.assigned_to_user_id or self.created_by_user_id


@dataclass(frozen=True)
class UserSnapshot:
    id: str
    tenant_id: str | None
    display_name: str
    role: str


class CrmGateway(Protocol):
    def get_lead(self, lead_id: str) -> LeadSnapshot | None: ...

    def assign_lead_owner(self, lead_id: str, owner_user_id: str) -> LeadSnapshot: ...

    def clear_reassignment_marker(self, lead_id: str) -> LeadSnapshot | None: ...

    def mark_reassignment_pending(self, lead_id: str, requested_by: str) -> LeadSnapshot: ...

    def get_deal(self, deal_id: str) -> DealSnapshot | None: ...

    def get_task(self, task_id: str) -> TaskSnapshot | None: ...

    def get_user(self, user_id: str) -> UserSnapshot | None: ...

    def display_name(self, user_id: str | None, default: str = "Someone") -> str: ...

    def tenant_for_user(self, user_id: str) -> str | None: ...

    def admin_user_ids(self, tenant_id: str | None) -> list[str]: ...

    def list_open_tasks(self, due_from: date | None, due_to: date | None, kind: str | None = None) -> list[TaskSnapshot]: ...

    def tasks_by_ids(self, task_ids: list[str]) -> dict[str, TaskSnapshot]: ...

    def list_open_deals_closing_between(self, start: date, end: date) -> list[DealSnapshot]: ...

    def list_stale_high_value_deals(self, threshold: Decimal, updated_before: datetime) -> list[DealSnapshot]: ...


def _parse_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _lead_name(lead: CRMLead) -> str:
    full_name = f"{lead.first_name or ''} {lead.last_name or ''}".strip()
    return full_name or lead.company_name or lead.email or "Lead"


class SqlCrmGateway:
    """CRM reads and the few lead writes the approval workflow needs.

    Writes are flushed, never committed; the caller owns the transaction.
    """

    def __init__(self, session: Session):
        self.session = session

    def get_lead(self, lead_id: str) -> LeadSnapshot | None:
        lead = self._lead(lead_id)
        return self._lead_snapshot(lead) if lead is not None else None

    def assign_lead_owner(self, lead_id: str, owner_user_id: str) -> LeadSnapshot:
        with tracer.start_as_current_span("crm.assign_lead_owner") as span:
            span.set_attribute("lead_id", str(lead_id))
            span.set_attribute("correlation_id", get_correlation_id() or "")
            lead = self._require_lead(lead_id)
            lead.owner_user_id = owner_user_id
            lead.reassignment_pending = False
            lead.reassignment_requested_by = None
            lead.updated_at = utcnow()
            self.session.add(lead)
            self.session.flush()
            return self._lead_snapshot(lead)

    def clear_reassignment_marker(self, lead_id: str) -> LeadSnapshot | None:
        lead = self._lead(lead_id)
        if lead is None:
            return None
        lead.reassignment_pending = False
        lead.reassignment_requested_by = None
        lead.updated_at = utcnow()
        self.session.add(lead)
        self.session.flush()
        return self._lead_snapshot(lead)

    def mark_reassignment_pending(self, lead_id: str, requested_by: str) -> LeadSnapshot:
        lead = self._require_lead(lead_id)
        lead.reassignment_pending = True
        lead.reassignment_requested_by = requested_by
        lead.updated_at = utcnow()
        self.session.add(lead)
        self.session.flush()
        return self._lead_snapshot(lead)

    def get_deal(self, deal_id: str) -> DealSnapshot | None:
        parsed = _parse_uuid(deal_id)
        if parsed is None:
            return None
        deal = self.session.get(CRMDeal, parsed)
        return self._deal_snapshot(deal) if deal is not None else None

    def get_task(self, task_id: str) -> TaskSnapshot | None:
        parsed = _parse_uuid(task_id)
        if parsed is None:
            return None
        task = self.session.get(CRMTask, parsed)
        return self._task_snapshot(task) if task is not None else None

    def get_user(self, user_id: str) -> UserSnapshot | None:
        profile = self.session.get(CRMUserProfile, user_id)
        if profile is None:
            return None
        full_name = f"{profile.first_name or ''} {profile.last_name or ''}".strip()
        return UserSnapshot(
            id=profile.id,
            tenant_id=profile.tenant_id,
            display_name=full_name or profile.email or profile.id,
            role=profile.role,
        )

    def display_name(self, user_id: str | None, default: str = "Someone") -> str:
        if not user_id:
            return default
        user = self.get_user(user_id)
        return user.display_name if user is not None else default

    def tenant_for_user(self, user_id: str) -> str | None:
        return self.session.scalar(select(CRMUserProfile.tenant_id).where(CRMUserProfile.id == user_id))

    def admin_user_ids(self, tenant_id: str | None) -> list[str]:
        stmt = select(CRMUserProfile.id).where(CRMUserProfile.role == "admin")
        if tenant_id is not None:
            stmt = stmt.where(CRMUserProfile.tenant_id == tenant_id)
        return list(self.session.scalars(stmt.order_by(CRMUserProfile.id)).all())

    def list_open_tasks(self, due_from: date | None, due_to: date | None, kind: str | None = None) -> list[TaskSnapshot]:
        stmt = select(CRMTask).where(and_(CRMTask.status != COMPLETED_TASK_STATUS, CRMTask.due_date.is_not(None)))
        if due_from is not None:
            stmt = stmt.where(CRMTask.due_date >= due_from)
        if due_to is not None:
            stmt = stmt.where(CRMTask.due_date <= due_to)
        if kind is not None:
            stmt = stmt.where(CRMTask.kind == kind)
        rows = self.session.scalars(stmt.order_by(CRMTask.due_date, CRMTask.id)).all()
        return [self._task_snapshot(row) for row in rows]

    def tasks_by_ids(self, task_ids: list[str]) -> dict[str, TaskSnapshot]:
        parsed = [item for item in (_parse_uuid(task_id) for task_id in task_ids) if item is not None]
        if not parsed:
            return {}
        rows = self.session.scalars(select(CRMTask).where(CRMTask.id.in_(parsed))).all()
        return {str(row.id): self._task_snapshot(row) for row in rows}

    def list_open_deals_closing_between(self, start: date, end: date) -> list[DealSnapshot]:
        rows = self.session.scalars(
            select(CRMDeal)
            .where(
                and_(
                    CRMDeal.stage.not_in(CLOSED_DEAL_STAGES),
                    CRMDeal.close_date.is_not(None),
                    CRMDeal.close_date >= start,
                    CRMDeal.close_date <= end,
                )
            )
            .order_by(CRMDeal.close_date, CRMDeal.id)
        ).all()
        return [self._deal_snapshot(row) for row in rows]

    def list_stale_high_value_deals(self, threshold: Decimal, updated_before: datetime) -> list[DealSnapshot]:
        rows = self.session.scalars(
            select(CRMDeal)
            .where(
                and_(
                    CRMDeal.stage.not_in(CLOSED_DEAL_STAGES),
                    CRMDeal.value >= threshold,
                    CRMDeal.updated_at < updated_before,
                )
            )
            .order_by(CRMDeal.id)
        ).all()
        return [self._deal_snapshot(row) for row in rows]

    def _lead(self, lead_id: str) -> CRMLead | None:
        parsed = _parse_uuid(lead_id)
        if parsed is None:
            return None
        return self.session.get(CRMLead, parsed)

    def _require_lead(self, lead_id: str) -> CRMLead:
        lead = self._lead(lead_id)
        if lead is None:
            raise CrmGatewayError(f"lead {lead_id} not found")
        return lead

    def _lead_snapshot(self, lead: CRMLead) -> LeadSnapshot:
        return LeadSnapshot(
            id=str(lead.id),
            display_name=_lead_name(lead),
            owner_user_id=lead.owner_user_id,
            reassignment_pending=bool(lead.reassignment_pending),
            reassignment_requested_by=lead.reassignment_requested_by,
        )

    def _deal_snapshot(self, deal: CRMDeal) -> DealSnapshot:
        return DealSnapshot(
            id=str(deal.id),
            title=deal.title,
            stage=deal.stage,
            value=Decimal(deal.value or 0),
            owner_user_id=deal.owner_user_id,
            close_date=deal.close_date,
        )

    def _task_snapshot(self, task: CRMTask) -> TaskSnapshot:
        return TaskSnapshot(
            id=str(task.id),
            title=task.title,
            kind=task.kind,
            status=task.status,
            assigned_to_user_id=task.assigned_to_user_id,
            created_by_user_id=task.created_by_user_id,
            due_date=task.due_date,
            start_time=task.start_time,
        )
