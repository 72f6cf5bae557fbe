from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.activity.descriptions import ActivityActionType, describe_activity
from app.activity.models import ActivityLogEntry
from app.core.config import get_settings
from app.core.failures import report_store_failure
from app.crm.gateway import CrmGateway, SqlCrmGateway
from app.metrics import observe_activity_entry
from app.notifications.models import utcnow
from app.notifications.service import NotificationService


logger = logging.getLogger("app.activity")


class ActivityRecorder:
    """Writes activity entries after a domain mutation has committed.

    Recording never raises to the caller: persistence errors go through
    ``report_store_failure`` and the method returns ``None``. A small set of
    action types additionally produce notices; failures there are logged and
    leave the entry in place.
    """

    component = "activity_recorder"

    def __init__(
        self,
        notifications: NotificationService | None = None,
        gateway_factory: Callable[[Session], CrmGateway] = SqlCrmGateway,
        clock: Callable[[], datetime] = utcnow,
        guard_window: timedelta | None = None,
    ) -> None:
        self.notifications = notifications or NotificationService(clock=clock)
        self.gateway_factory = gateway_factory
        self.clock = clock
        self.guard_window = guard_window or timedelta(seconds=get_settings().activity_dedup_window_seconds)

    def record(
        self,
        session: Session,
        *,
        actor_id: str,
        action_type: ActivityActionType | str,
        entity_kind: str,
        entity_id: str | None = None,
        entity_title: str | None = None,
        metadata: dict[str, Any] | None = None,
        tenant_id: str | None = None,
    ) -> ActivityLogEntry | None:
        action = str(action_type)
        gateway = self.gateway_factory(session)
        description = describe_activity(action, entity_title, metadata)
        if tenant_id is None:
            tenant_id = self._resolve_tenant(session, gateway, actor_id)

        try:
            if self._recent_duplicate_exists(session, actor_id, description, entity_kind, entity_id):
                observe_activity_entry("skipped")
                logger.info(
                    "activity.duplicate_skipped",
                    extra={"action_type": action, "entity_id": entity_id, "reason": "recent_duplicate"},
                )
                return None
            entry = ActivityLogEntry(
                actor_id=actor_id,
                tenant_id=tenant_id,
                action_type=action,
                entity_kind=entity_kind,
                entity_id=entity_id,
                entity_title=entity_title,
                description=description,
                metadata_json=json.dumps(metadata, default=str, sort_keys=True) if metadata else None,
                created_at=self.clock(),
            )
            session.add(entry)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            observe_activity_entry("failed")
            report_store_failure(self.component, "record", exc, action_type=action, entity_id=entity_id)
            return None

        observe_activity_entry("recorded")
        logger.info("activity.recorded", extra={"action_type": action, "entity_id": entity_id})
        self._notify_for_activity(session, gateway, actor_id, action, entity_id, entity_title, metadata or {})
        return entry

    def list_for_actor(
        self,
        session: Session,
        actor_id: str,
        limit: int = 50,
        entity_kind: str | None = None,
        entity_id: str | None = None,
    ) -> list[ActivityLogEntry]:
        """Entries of the tenant the actor's profile belongs to; empty when it has none."""
        tenant_id = self._resolve_tenant(session, self.gateway_factory(session), actor_id)
        if tenant_id is None:
            return []
        return self.list_for_tenant(session, tenant_id, limit=limit, entity_kind=entity_kind, entity_id=entity_id)

    def list_for_tenant(
        self,
        session: Session,
        tenant_id: str,
        limit: int = 50,
        entity_kind: str | None = None,
        entity_id: str | None = None,
    ) -> list[ActivityLogEntry]:
        stmt = select(ActivityLogEntry).where(ActivityLogEntry.tenant_id == tenant_id)
        if entity_kind is not None:
            stmt = stmt.where(ActivityLogEntry.entity_kind == entity_kind)
        if entity_id is not None:
            stmt = stmt.where(ActivityLogEntry.entity_id == entity_id)
        try:
            rows = session.scalars(
                stmt.order_by(ActivityLogEntry.created_at.desc(), ActivityLogEntry.id.desc()).limit(limit)
            ).all()
        except SQLAlchemyError as exc:
            session.rollback()
            report_store_failure(self.component, "list_for_tenant", exc)
            return []
        return list(rows)

    def _resolve_tenant(self, session: Session, gateway: CrmGateway, actor_id: str) -> str | None:
        try:
            return gateway.tenant_for_user(actor_id)
        except SQLAlchemyError as exc:
            session.rollback()
            report_store_failure(self.component, "resolve_tenant", exc)
            return None

    def _recent_duplicate_exists(
        self,
        session: Session,
        actor_id: str,
        description: str,
        entity_kind: str,
        entity_id: str | None,
    ) -> bool:
        since = self.clock() - self.guard_window
        entity_clause = ActivityLogEntry.entity_id.is_(None) if entity_id is None else ActivityLogEntry.entity_id == entity_id
        existing = session.scalar(
            select(ActivityLogEntry.id)
            .where(
                and_(
                    ActivityLogEntry.actor_id == actor_id,
                    ActivityLogEntry.description == description,
                    ActivityLogEntry.entity_kind == entity_kind,
                    entity_clause,
                    ActivityLogEntry.created_at >= since,
                )
            )
            .limit(1)
        )
        return existing is not None

    def _notify_for_activity(
        self,
        session: Session,
        gateway: CrmGateway,
        actor_id: str,
        action: str,
        entity_id: str | None,
        entity_title: str | None,
        metadata: dict[str, Any],
    ) -> None:
        if entity_id is None:
            return
        generator = self.notifications.generator
        try:
            if action == ActivityActionType.DEAL_STAGE_CHANGED and metadata.get("to_stage") == "lost":
                deal = gateway.get_deal(entity_id)
                if deal is None:
                    return
                draft = generator.deal_lost(
                    deal.owner_user_id or actor_id,
                    entity_title or deal.title or "Unknown Deal",
                    deal.id,
                    deal.value,
                )
                self.notifications.create_notice(session, draft)
            elif action == ActivityActionType.TASK_CREATED:
                task = gateway.get_task(entity_id)
                if task is None or not task.assigned_to_user_id or task.assigned_to_user_id == actor_id:
                    return
                draft = generator.task_assigned(
                    task.assigned_to_user_id,
                    entity_title or task.title or "Unknown Task",
                    task.id,
                    gateway.display_name(actor_id),
                )
                self.notifications.create_notice(session, draft)
        except Exception:
            logger.exception("activity.notification_failed", extra={"action_type": action, "entity_id": entity_id})
