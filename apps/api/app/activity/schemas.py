from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from app.activity.descriptions import ActivityEntityKind


class ActivityCreate(BaseModel):
    action_type: str = Field(min_length=1, max_length=64)
    entity_kind: ActivityEntityKind
    entity_id: str | None = None
    entity_title: str | None = None
    metadata: dict[str, Any] | None = None


class ActivityRead(BaseModel):
    id: UUID
    actor_id: str
    tenant_id: str | None
    action_type: str
    entity_kind: str
    entity_id: str | None
    entity_title: str | None
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @classmethod
    def from_model(cls, row: Any) -> ActivityRead:
        return cls(
            id=row.id,
            actor_id=row.actor_id,
            tenant_id=row.tenant_id,
            action_type=row.action_type,
            entity_kind=row.entity_kind,
            entity_id=row.entity_id,
            entity_title=row.entity_title,
            description=row.description,
            metadata=json.loads(row.metadata_json) if row.metadata_json else {},
            created_at=row.created_at,
        )


class ActivityRecordResult(BaseModel):
    recorded: bool
    entry: ActivityRead | None = None
