from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app import events
from app.core.config import get_settings
from app.metrics import observe_notice_created
from app.notifications.dedup import DedupEngine
from app.notifications.generator import NoticeGenerator
from app.notifications.models import Notice, utcnow
from app.notifications.policies import resolve_priority
from app.notifications.repository import NoticeStore
from app.notifications.schemas import (
    EntityKind,
    NoticeDraft,
    NoticePriority,
    NoticeType,
    parse_metadata,
)


logger = logging.getLogger("app.notifications.service")


class NotificationService:
    """Entry point for creating and managing notices.

    ``create_notice`` runs the full pipeline: replace purge, duplicate check,
    priority resolution, insert, then the ``notifications.notice.created`` event.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        generator: NoticeGenerator | None = None,
    ) -> None:
        self.store = NoticeStore(clock=clock)
        self.dedup = DedupEngine(self.store)
        self.generator = generator or NoticeGenerator(get_settings().action_base_path)

    @property
    def clock(self) -> Callable[[], datetime]:
        return self.store.clock

    def create_notice(self, session: Session, draft: NoticeDraft) -> uuid.UUID | None:
        self.dedup.purge_for_replace(session, draft)
        if self.dedup.find_duplicate(session, draft) is not None:
            return None

        priority = resolve_priority(draft.notice_type, draft.priority)
        notice_id = self.store.create(session, draft, priority)
        if notice_id is None:
            return None

        observe_notice_created(draft.notice_type.value)
        events.publish(
            "notifications.notice.created",
            {
                "notice_id": str(notice_id),
                "notice_type": draft.notice_type.value,
                "recipient_id": draft.recipient_id,
                "entity_kind": draft.entity_kind.value,
                "entity_id": draft.entity_id,
                "priority": priority.value,
            },
        )
        return notice_id

    def create(
        self,
        session: Session,
        *,
        notice_type: NoticeType,
        recipient_id: str,
        title: str,
        message: str,
        entity_kind: EntityKind = EntityKind.SYSTEM,
        entity_id: str | None = None,
        priority: NoticePriority | None = None,
        action_ref: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> uuid.UUID | None:
        """Build a draft from loose arguments and run it through the pipeline.

        Raises ``ValueError`` when ``metadata`` does not fit the payload model
        of ``notice_type``.
        """
        try:
            parsed = parse_metadata(notice_type, metadata)
        except ValidationError as exc:
            raise ValueError(f"invalid metadata for {NoticeType(notice_type).value}: {exc.errors()}") from exc
        draft = NoticeDraft(
            recipient_id=recipient_id,
            notice_type=notice_type,
            title=title,
            message=message,
            entity_kind=entity_kind,
            entity_id=entity_id,
            priority=priority,
            action_ref=action_ref,
            metadata=parsed,
        )
        return self.create_notice(session, draft)

    def list_notices(self, session: Session, user_id: str, limit: int | None = None) -> list[Notice]:
        settings = get_settings()
        effective = limit if limit is not None else settings.notice_list_default_limit
        effective = max(1, min(effective, settings.notice_list_max_limit))
        return self.store.list_for_user(session, user_id, effective)

    def unread_count(self, session: Session, user_id: str) -> int:
        return self.store.unread_count(session, user_id)

    def mark_read(self, session: Session, notice_id: uuid.UUID, user_id: str | None = None) -> bool:
        return self.store.mark_read(session, notice_id, user_id)

    def mark_all_read(self, session: Session, user_id: str) -> bool:
        return self.store.mark_all_read(session, user_id)

    def clear_all(self, session: Session, user_id: str) -> bool:
        return self.store.clear_all(session, user_id)
