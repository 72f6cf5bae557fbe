from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Literal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.failures import report_store_failure
from app.metrics import observe_notice_suppressed, observe_notices_replaced
from app.notifications.policies import dedup_policy_for
from app.notifications.repository import NoticeStore
from app.notifications.schemas import NoticeDraft


logger = logging.getLogger("app.notifications.dedup")

MatchRule = Literal["entity", "content"]


@dataclass(frozen=True)
class DuplicateMatch:
    rule: MatchRule
    notice_id: uuid.UUID


class DedupEngine:
    """Decides whether an equivalent notice already fired inside its type's window.

    Two independent rules are evaluated in order: the entity match on
    (recipient, type, entity kind, entity id) when the draft carries an entity,
    then the content match on (recipient, type, title, message). Resolved
    approval requests never match. If the store cannot answer, the engine
    fails open and lets creation proceed.
    """

    component = "dedup_engine"

    def __init__(self, store: NoticeStore):
        self.store = store

    def find_duplicate(self, session: Session, draft: NoticeDraft) -> DuplicateMatch | None:
        policy = dedup_policy_for(draft.notice_type)
        since = self.store.clock() - policy.window

        rules: list[MatchRule] = ["entity", "content"] if draft.entity_id is not None else ["content"]
        for rule in rules:
            try:
                if rule == "entity":
                    existing = self.store.find_recent_entity_match(session, draft, since)
                else:
                    existing = self.store.find_recent_content_match(session, draft, since)
            except SQLAlchemyError as exc:
                session.rollback()
                report_store_failure(self.component, "find_duplicate", exc, notice_type=draft.notice_type.value)
                return None
            if existing is not None:
                observe_notice_suppressed(draft.notice_type.value, rule)
                logger.info(
                    "notice.suppressed",
                    extra={
                        "notice_type": draft.notice_type.value,
                        "recipient_id": draft.recipient_id,
                        "entity_id": draft.entity_id,
                        "rule": rule,
                        "notice_id": str(existing),
                    },
                )
                return DuplicateMatch(rule=rule, notice_id=existing)
        return None

    def purge_for_replace(self, session: Session, draft: NoticeDraft) -> int:
        """Delete every prior notice of the draft's type and entity for its recipient."""
        if draft.entity_id is None or dedup_policy_for(draft.notice_type).strategy != "replace":
            return 0
        deleted = self.store.delete_for_entity(session, draft.recipient_id, draft.notice_type, draft.entity_id)
        if not deleted:
            return 0
        observe_notices_replaced(draft.notice_type.value, deleted)
        logger.info(
            "notice.replaced",
            extra={
                "notice_type": draft.notice_type.value,
                "recipient_id": draft.recipient_id,
                "entity_id": draft.entity_id,
                "deleted": deleted,
            },
        )
        return deleted
