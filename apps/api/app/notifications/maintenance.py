from __future__ import annotations

import logging
import uuid

from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.failures import report_store_failure
from app.metrics import observe_duplicates_removed
from app.notifications.repository import NoticeStore
from app.notifications.schemas import NoticeType


logger = logging.getLogger("app.notifications.maintenance")
tracer = trace.get_tracer("app.notifications.maintenance")

NO_ENTITY = "no-entity"


class NoticeMaintenance:
    """Corrective sweep restoring one notice per (type, entity) for a recipient."""

    component = "notice_maintenance"

    def __init__(self, store: NoticeStore | None = None) -> None:
        self.store = store or NoticeStore()

    def cleanup_duplicates(
        self,
        session: Session,
        user_id: str,
        notice_type: NoticeType | None = None,
        entity_id: str | None = None,
    ) -> int | None:
        """Keep the newest notice of every (type, entity) group and delete the rest.

        Returns the number deleted, or ``None`` when the store could not be read
        or written. A second run over the same data deletes nothing.
        """
        with tracer.start_as_current_span("notifications.cleanup_duplicates") as span:
            span.set_attribute("recipient_id", user_id)
            try:
                rows = self.store.list_group_rows(session, user_id, notice_type, entity_id)
            except SQLAlchemyError as exc:
                session.rollback()
                report_store_failure(self.component, "cleanup_duplicates", exc, recipient_id=user_id)
                return None

            seen: set[tuple[str, str]] = set()
            doomed: list[uuid.UUID] = []
            # Rows arrive newest first, so the first row of each group survives.
            for row in rows:
                key = (row.notice_type, row.entity_id or NO_ENTITY)
                if key in seen:
                    doomed.append(row.id)
                else:
                    seen.add(key)

            deleted = self.store.delete_ids(session, doomed, operation="cleanup_duplicates")
            if deleted is None:
                return None
            span.set_attribute("deleted", deleted)
            if deleted:
                observe_duplicates_removed(deleted)
            logger.info(
                "notice.duplicates_removed",
                extra={"recipient_id": user_id, "deleted": deleted, "notice_type": notice_type.value if notice_type else None},
            )
            return deleted
