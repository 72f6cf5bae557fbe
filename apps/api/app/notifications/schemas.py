from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


class NoticeType(StrEnum):
    TASK_ASSIGNED = "task_assigned"
    TASK_OVERDUE = "task_overdue"
    TASK_DUE_TODAY = "task_due_today"
    TASK_DUE_TOMORROW = "task_due_tomorrow"
    DEAL_ASSIGNED = "deal_assigned"
    DEAL_STAGE_CHANGED = "deal_stage_changed"
    DEAL_LOST = "deal_lost"
    DEAL_HIGH_VALUE = "deal_high_value"
    DEAL_CLOSE_APPROACHING = "deal_close_approaching"
    ACTIVITY_MISSED = "activity_missed"
    MEETING_TODAY = "meeting_today"
    ACTIVITY_ADDED = "activity_added"
    SYSTEM_ALERT = "system_alert"
    REASSIGNMENT_REQUESTED = "reassignment_requested"
    REASSIGNMENT_APPROVED = "reassignment_approved"
    REASSIGNMENT_REJECTED = "reassignment_rejected"
    MENTION = "mention"


class EntityKind(StrEnum):
    DEAL = "deal"
    TASK = "task"
    ACTIVITY = "activity"
    LEAD = "lead"
    SYSTEM = "system"


class NoticePriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


Resolution = Literal["approved", "rejected"]


class NoticeMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    def to_json(self) -> str:
        return json.dumps(self.model_dump(mode="json", by_alias=True, exclude_none=True), sort_keys=True)


class EmptyMetadata(NoticeMetadata):
    pass


class AssignedByMetadata(NoticeMetadata):
    assigned_by: str


class TaskOverdueMetadata(NoticeMetadata):
    days_past_due: int = Field(ge=0)


class DealValueMetadata(NoticeMetadata):
    value: Decimal


class DealStageChangedMetadata(NoticeMetadata):
    from_stage: str
    to_stage: str


class DealCloseApproachingMetadata(NoticeMetadata):
    days_until_close: int = Field(ge=0)


class MeetingTodayMetadata(NoticeMetadata):
    meeting_time: str


class ActivityAddedMetadata(NoticeMetadata):
    added_by: str | None = None


class SystemAlertMetadata(NoticeMetadata):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class ReassignmentRequestedMetadata(NoticeMetadata):
    lead_id: str = Field(alias="leadId", min_length=1)
    requested_assignee_id: str = Field(alias="requestedUserId", min_length=1)
    requesting_user_id: str = Field(alias="requestingUserId", min_length=1)
    lead_name: str | None = Field(default=None, alias="leadName")
    requested_user_name: str | None = Field(default=None, alias="requestedUserName")
    requesting_user_name: str | None = Field(default=None, alias="requestingUserName")
    current_owner_id: str | None = Field(default=None, alias="currentOwnerId")
    reason: str | None = None


class ReassignmentApprovedMetadata(NoticeMetadata):
    lead_id: str = Field(alias="leadId")
    new_owner_id: str = Field(alias="newOwnerId")
    new_owner_name: str = Field(alias="newOwnerName")
    approved_by: str = Field(alias="approvedBy")


class ReassignmentRejectedMetadata(NoticeMetadata):
    lead_id: str = Field(alias="leadId")
    rejected_by: str = Field(alias="rejectedBy")
    reason: str | None = None


class MentionMetadata(NoticeMetadata):
    mentioned_by: str = Field(alias="mentionedBy")
    lead_id: str | None = Field(default=None, alias="leadId")
    note_excerpt: str | None = Field(default=None, alias="noteExcerpt")


METADATA_MODELS: dict[NoticeType, type[NoticeMetadata]] = {
    NoticeType.TASK_ASSIGNED: AssignedByMetadata,
    NoticeType.TASK_OVERDUE: TaskOverdueMetadata,
    NoticeType.TASK_DUE_TODAY: EmptyMetadata,
    NoticeType.TASK_DUE_TOMORROW: EmptyMetadata,
    NoticeType.DEAL_ASSIGNED: AssignedByMetadata,
    NoticeType.DEAL_STAGE_CHANGED: DealStageChangedMetadata,
    NoticeType.DEAL_LOST: DealValueMetadata,
    NoticeType.DEAL_HIGH_VALUE: DealValueMetadata,
    NoticeType.DEAL_CLOSE_APPROACHING: DealCloseApproachingMetadata,
    NoticeType.ACTIVITY_MISSED: EmptyMetadata,
    NoticeType.MEETING_TODAY: MeetingTodayMetadata,
    NoticeType.ACTIVITY_ADDED: ActivityAddedMetadata,
    NoticeType.SYSTEM_ALERT: SystemAlertMetadata,
    NoticeType.REASSIGNMENT_REQUESTED: ReassignmentRequestedMetadata,
    NoticeType.REASSIGNMENT_APPROVED: ReassignmentApprovedMetadata,
    NoticeType.REASSIGNMENT_REJECTED: ReassignmentRejectedMetadata,
    NoticeType.MENTION: MentionMetadata,
}


def parse_metadata(notice_type: NoticeType | str, raw: dict[str, Any] | str | None) -> NoticeMetadata:
    """Validate a raw metadata bag against the payload model of ``notice_type``.

    Raises ``pydantic.ValidationError`` when required fields are missing.
    """
    if isinstance(raw, str):
        raw = json.loads(raw) if raw else None
    model = METADATA_MODELS[NoticeType(notice_type)]
    return model.model_validate(raw or {})


class NoticeDraft(BaseModel):
    """A fully-formed notice ready for the dedup and store pipeline."""

    recipient_id: str = Field(min_length=1)
    notice_type: NoticeType
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    entity_kind: EntityKind = EntityKind.SYSTEM
    entity_id: str | None = None
    priority: NoticePriority | None = None
    action_ref: str | None = None
    metadata: NoticeMetadata | None = None

    @model_validator(mode="after")
    def _check_metadata_shape(self) -> NoticeDraft:
        expected = METADATA_MODELS[self.notice_type]
        if isinstance(self.metadata, expected):
            return self
        raw = self.metadata.model_dump(by_alias=True) if self.metadata is not None else {}
        try:
            self.metadata = expected.model_validate(raw)
        except ValidationError as exc:
            raise ValueError(f"invalid metadata for {self.notice_type.value}: {exc.errors()}") from exc
        return self


class NoticeCreate(BaseModel):
    type: NoticeType
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    entity_kind: EntityKind = EntityKind.SYSTEM
    entity_id: str | None = None
    priority: NoticePriority | None = None
    action_ref: str | None = None
    metadata: dict[str, Any] | None = None


class NoticeCreateResult(BaseModel):
    created: bool
    notice_id: UUID | None = None


class NoticeRead(BaseModel):
    id: UUID
    recipient_id: str
    type: NoticeType | str
    title: str
    message: str
    entity_kind: EntityKind | str
    entity_id: str | None
    priority: NoticePriority | str
    is_read: bool
    action_ref: str | None
    metadata: dict[str, Any] = Field(default_factory=dict)
    resolution: Resolution | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    created_at: datetime

    @classmethod
    def from_model(cls, row: Any) -> NoticeRead:
        metadata = json.loads(row.metadata_json) if row.metadata_json else {}
        return cls(
            id=row.id,
            recipient_id=row.recipient_id,
            type=row.notice_type,
            title=row.title,
            message=row.message,
            entity_kind=row.entity_kind,
            entity_id=row.entity_id,
            priority=row.priority,
            is_read=row.is_read,
            action_ref=row.action_ref,
            metadata=metadata,
            resolution=row.resolution,
            resolved_at=row.resolved_at,
            resolved_by=row.resolved_by,
            created_at=row.created_at,
        )


class UnreadCountRead(BaseModel):
    unread: int


class BulkActionResult(BaseModel):
    success: bool


class CleanupRequest(BaseModel):
    scope: Literal["all", "duplicates", "stale"] = "all"
    type: NoticeType | None = None
    entity_id: str | None = None


class CleanupResult(BaseModel):
    success: bool
    duplicates_removed: int = 0
    stale_removed: int = 0


class ReassignmentRequestCreate(BaseModel):
    requested_assignee_id: str = Field(min_length=1)
    reason: str | None = None


class ReassignmentRequestResult(BaseModel):
    lead_id: str
    notice_ids: list[UUID] = Field(default_factory=list)


class RejectReassignmentRequest(BaseModel):
    reason: str | None = None


class ApprovalResultRead(BaseModel):
    notice_id: UUID
    outcome: Resolution
    already_resolved: bool
    follow_up_notice_ids: list[UUID] = Field(default_factory=list)
