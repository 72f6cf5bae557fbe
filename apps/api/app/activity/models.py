from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text, Uuid, event
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.notifications.models import utcnow


class ImmutableRecordError(Exception):
    pass


class ActivityLogEntry(Base):
    __tablename__ = "activity_log_entry"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    tenant_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    entity_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


Index("ix_activity_log_entry_tenant_created", ActivityLogEntry.tenant_id, ActivityLogEntry.created_at)
Index(
    "ix_activity_log_entry_guard",
    ActivityLogEntry.actor_id,
    ActivityLogEntry.entity_kind,
    ActivityLogEntry.entity_id,
    ActivityLogEntry.created_at,
)


@event.listens_for(ActivityLogEntry, "before_update")
def _reject_update(_mapper: object, _connection: object, target: ActivityLogEntry) -> None:
    raise ImmutableRecordError(f"activity entry {target.id} is immutable")


@event.listens_for(ActivityLogEntry, "before_delete")
def _reject_delete(_mapper: object, _connection: object, target: ActivityLogEntry) -> None:
    raise ImmutableRecordError(f"activity entry {target.id} cannot be deleted")
