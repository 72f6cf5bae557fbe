from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime

from sqlalchemy import ColumnElement, Row, and_, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.failures import report_store_failure
from app.notifications.models import Notice, utcnow
from app.notifications.schemas import NoticeDraft, NoticePriority, NoticeType


logger = logging.getLogger("app.notifications.store")

APPROVAL_TYPES = (NoticeType.REASSIGNMENT_REQUESTED,)


def pending_approval_clause() -> ColumnElement[bool]:
    """Unresolved approval requests; deleting one would strand its entity's pending marker."""
    return and_(Notice.notice_type.in_([item.value for item in APPROVAL_TYPES]), Notice.resolution.is_(None))


class NoticeStore:
    """Persistence for notices.

    Every method that changes state commits its own unit of work, so any domain
    write sharing the session must be committed before notices are touched.
    Failures of the best-effort operations are reported and mapped to
    ``None``/``False``/empty results; callers treat those as "no state changed".
    """

    component = "notice_store"

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def create(self, session: Session, draft: NoticeDraft, priority: NoticePriority) -> uuid.UUID | None:
        notice = Notice(
            recipient_id=draft.recipient_id,
            notice_type=draft.notice_type.value,
            title=draft.title,
            message=draft.message,
            entity_kind=draft.entity_kind.value,
            entity_id=draft.entity_id,
            priority=priority.value,
            is_read=False,
            action_ref=draft.action_ref,
            metadata_json=draft.metadata.to_json() if draft.metadata is not None else None,
            created_at=self.clock(),
        )
        try:
            session.add(notice)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            report_store_failure(
                self.component,
                "create",
                exc,
                notice_type=draft.notice_type.value,
                recipient_id=draft.recipient_id,
            )
            return None
        logger.info(
            "notice.created",
            extra={
                "notice_id": str(notice.id),
                "notice_type": notice.notice_type,
                "recipient_id": notice.recipient_id,
                "entity_id": notice.entity_id,
            },
        )
        return notice.id

    def list_for_user(self, session: Session, user_id: str, limit: int) -> list[Notice]:
        try:
            rows = session.scalars(
                select(Notice)
                .where(Notice.recipient_id == user_id)
                .order_by(Notice.created_at.desc(), Notice.id.desc())
                .limit(limit)
            ).all()
        except SQLAlchemyError as exc:
            session.rollback()
            report_store_failure(self.component, "list_for_user", exc, recipient_id=user_id)
            return []
        return list(rows)

    def unread_count(self, session: Session, user_id: str) -> int:
        try:
            count = session.scalar(
                select(func.count(Notice.id)).where(and_(Notice.recipient_id == user_id, Notice.is_read.is_(False)))
            )
        except SQLAlchemyError as exc:
            session.rollback()
            report_store_failure(self.component, "unread_count", exc, recipient_id=user_id)
            return 0
        return int(count or 0)

    def get(self, session: Session, notice_id: uuid.UUID) -> Notice | None:
        return session.get(Notice, notice_id, populate_existing=True)

    def mark_read(self, session: Session, notice_id: uuid.UUID, user_id: str | None = None) -> bool:
        stmt = update(Notice).where(Notice.id == notice_id)
        if user_id is not None:
            stmt = stmt.where(Notice.recipient_id == user_id)
        try:
            result = session.execute(stmt.values(is_read=True))
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            report_store_failure(self.component, "mark_read", exc, notice_id=str(notice_id))
            return False
        return result.rowcount > 0

    def mark_all_read(self, session: Session, user_id: str) -> bool:
        try:
            result = session.execute(
                update(Notice)
                .where(and_(Notice.recipient_id == user_id, Notice.is_read.is_(False)))
                .values(is_read=True)
            )
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            report_store_failure(self.component, "mark_all_read", exc, recipient_id=user_id)
            return False
        logger.info("notice.mark_all_read", extra={"recipient_id": user_id, "updated": result.rowcount})
        return True

    def clear_all(self, session: Session, user_id: str) -> bool:
        """Delete the recipient's notices except approval requests still awaiting a decision."""
        try:
            result = session.execute(
                delete(Notice).where(and_(Notice.recipient_id == user_id, ~pending_approval_clause()))
            )
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            report_store_failure(self.component, "clear_all", exc, recipient_id=user_id)
            return False
        logger.info("notice.clear_all", extra={"recipient_id": user_id, "deleted": result.rowcount})
        return True

    def find_recent_entity_match(
        self,
        session: Session,
        draft: NoticeDraft,
        since: datetime,
    ) -> uuid.UUID | None:
        """Raises ``SQLAlchemyError``; the dedup engine decides how to degrade."""
        return session.scalar(
            select(Notice.id)
            .where(
                and_(
                    Notice.recipient_id == draft.recipient_id,
                    Notice.notice_type == draft.notice_type.value,
                    Notice.entity_kind == draft.entity_kind.value,
                    Notice.entity_id == draft.entity_id,
                    Notice.created_at >= since,
                    Notice.resolution.is_(None),
                )
            )
            .limit(1)
        )

    def find_recent_content_match(
        self,
        session: Session,
        draft: NoticeDraft,
        since: datetime,
    ) -> uuid.UUID | None:
        """Raises ``SQLAlchemyError``; the dedup engine decides how to degrade."""
        return session.scalar(
            select(Notice.id)
            .where(
                and_(
                    Notice.recipient_id == draft.recipient_id,
                    Notice.notice_type == draft.notice_type.value,
                    Notice.title == draft.title,
                    Notice.message == draft.message,
                    Notice.created_at >= since,
                    Notice.resolution.is_(None),
                )
            )
            .limit(1)
        )

    def delete_for_entity(
        self,
        session: Session,
        user_id: str,
        notice_type: NoticeType,
        entity_id: str,
    ) -> int | None:
        try:
            result = session.execute(
                delete(Notice).where(
                    and_(
                        Notice.recipient_id == user_id,
                        Notice.notice_type == notice_type.value,
                        Notice.entity_id == entity_id,
                    )
                )
            )
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            report_store_failure(self.component, "delete_for_entity", exc, notice_type=notice_type.value)
            return None
        return result.rowcount

    def list_group_rows(
        self,
        session: Session,
        user_id: str,
        notice_type: NoticeType | None = None,
        entity_id: str | None = None,
    ) -> Sequence[Row[tuple[uuid.UUID, str, str | None, datetime]]]:
        """Raises ``SQLAlchemyError``. Rows come newest first; pending approval requests are left out."""
        stmt = select(Notice.id, Notice.notice_type, Notice.entity_id, Notice.created_at).where(
            Notice.recipient_id == user_id,
            ~pending_approval_clause(),
        )
        if notice_type is not None:
            stmt = stmt.where(Notice.notice_type == notice_type.value)
        if entity_id is not None:
            stmt = stmt.where(Notice.entity_id == entity_id)
        return session.execute(stmt.order_by(Notice.created_at.desc(), Notice.id.desc())).all()

    def list_by_types(
        self,
        session: Session,
        notice_types: Sequence[NoticeType],
        user_id: str | None = None,
    ) -> list[Notice]:
        """Raises ``SQLAlchemyError``."""
        stmt = select(Notice).where(Notice.notice_type.in_([item.value for item in notice_types]))
        if user_id is not None:
            stmt = stmt.where(Notice.recipient_id == user_id)
        return list(session.scalars(stmt.order_by(Notice.created_at.desc())).all())

    def delete_ids(self, session: Session, notice_ids: Sequence[uuid.UUID], operation: str = "delete_ids") -> int | None:
        if not notice_ids:
            return 0
        try:
            result = session.execute(delete(Notice).where(Notice.id.in_(list(notice_ids))))
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            report_store_failure(self.component, operation, exc)
            return None
        return result.rowcount

    def claim_resolution(
        self,
        session: Session,
        notice_id: uuid.UUID,
        resolution: str,
        actor_id: str,
    ) -> bool:
        """Resolve a pending notice only if nobody resolved it first.

        Flushes without committing so the claim shares the caller's transaction
        with the entity mutation it guards. Raises ``SQLAlchemyError``.
        """
        result = session.execute(
            update(Notice)
            .where(and_(Notice.id == notice_id, Notice.resolution.is_(None)))
            .values(is_read=True, resolution=resolution, resolved_at=self.clock(), resolved_by=actor_id)
        )
        return result.rowcount == 1

    def resolve_pending_siblings(
        self,
        session: Session,
        notice_id: uuid.UUID,
        notice_type: NoticeType,
        entity_id: str,
        resolution: str,
        actor_id: str,
    ) -> int:
        """Resolve the other pending copies of a request sent to several recipients.

        Same transaction contract as ``claim_resolution``. Raises ``SQLAlchemyError``.
        """
        result = session.execute(
            update(Notice)
            .where(
                and_(
                    Notice.id != notice_id,
                    Notice.notice_type == notice_type.value,
                    Notice.entity_id == entity_id,
                    Notice.resolution.is_(None),
                )
            )
            .values(is_read=True, resolution=resolution, resolved_at=self.clock(), resolved_by=actor_id)
        )
        return result.rowcount
