from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Literal

from app.notifications.schemas import NoticePriority, NoticeType


DedupStrategy = Literal["suppress", "replace"]


@dataclass(frozen=True)
class DedupPolicy:
    window: timedelta
    strategy: DedupStrategy = "suppress"


NOTICE_PRIORITIES: dict[NoticeType, NoticePriority] = {
    NoticeType.TASK_ASSIGNED: NoticePriority.MEDIUM,
    NoticeType.TASK_OVERDUE: NoticePriority.HIGH,
    NoticeType.TASK_DUE_TODAY: NoticePriority.HIGH,
    NoticeType.TASK_DUE_TOMORROW: NoticePriority.MEDIUM,
    NoticeType.DEAL_ASSIGNED: NoticePriority.MEDIUM,
    NoticeType.DEAL_STAGE_CHANGED: NoticePriority.MEDIUM,
    NoticeType.DEAL_LOST: NoticePriority.HIGH,
    NoticeType.DEAL_HIGH_VALUE: NoticePriority.HIGH,
    NoticeType.DEAL_CLOSE_APPROACHING: NoticePriority.MEDIUM,
    NoticeType.ACTIVITY_MISSED: NoticePriority.HIGH,
    NoticeType.MEETING_TODAY: NoticePriority.URGENT,
    NoticeType.ACTIVITY_ADDED: NoticePriority.LOW,
    NoticeType.SYSTEM_ALERT: NoticePriority.MEDIUM,
    NoticeType.REASSIGNMENT_REQUESTED: NoticePriority.HIGH,
    NoticeType.REASSIGNMENT_APPROVED: NoticePriority.MEDIUM,
    NoticeType.REASSIGNMENT_REJECTED: NoticePriority.MEDIUM,
    NoticeType.MENTION: NoticePriority.MEDIUM,
}

_HOUR = timedelta(hours=1)
_TASK_REMINDER = DedupPolicy(window=timedelta(hours=8))

# Every type is listed explicitly; a new NoticeType without a row fails at import.
DEDUP_POLICIES: dict[NoticeType, DedupPolicy] = {
    NoticeType.TASK_ASSIGNED: DedupPolicy(window=_HOUR),
    NoticeType.TASK_OVERDUE: _TASK_REMINDER,
    NoticeType.TASK_DUE_TODAY: _TASK_REMINDER,
    NoticeType.TASK_DUE_TOMORROW: _TASK_REMINDER,
    NoticeType.DEAL_ASSIGNED: DedupPolicy(window=_HOUR),
    NoticeType.DEAL_STAGE_CHANGED: DedupPolicy(window=_HOUR),
    NoticeType.DEAL_LOST: DedupPolicy(window=_HOUR),
    NoticeType.DEAL_HIGH_VALUE: DedupPolicy(window=_HOUR),
    NoticeType.DEAL_CLOSE_APPROACHING: DedupPolicy(window=timedelta(hours=24), strategy="replace"),
    NoticeType.ACTIVITY_MISSED: DedupPolicy(window=_HOUR),
    NoticeType.MEETING_TODAY: DedupPolicy(window=timedelta(hours=2)),
    NoticeType.ACTIVITY_ADDED: DedupPolicy(window=_HOUR),
    NoticeType.SYSTEM_ALERT: DedupPolicy(window=_HOUR),
    NoticeType.REASSIGNMENT_REQUESTED: DedupPolicy(window=_HOUR),
    NoticeType.REASSIGNMENT_APPROVED: DedupPolicy(window=_HOUR),
    NoticeType.REASSIGNMENT_REJECTED: DedupPolicy(window=_HOUR),
    NoticeType.MENTION: DedupPolicy(window=_HOUR),
}


def missing_policy_entries() -> dict[str, list[str]]:
    missing = {
        "priority": [item.value for item in NoticeType if item not in NOTICE_PRIORITIES],
        "dedup": [item.value for item in NoticeType if item not in DEDUP_POLICIES],
    }
    return {table: values for table, values in missing.items() if values}


def _ensure_tables_are_total() -> None:
    missing = missing_policy_entries()
    if missing:
        raise RuntimeError(f"notice policy tables are missing entries: {missing}")


_ensure_tables_are_total()


def resolve_priority(notice_type: NoticeType, override: NoticePriority | None = None) -> NoticePriority:
    if override is not None:
        return override
    return NOTICE_PRIORITIES[notice_type]


def dedup_policy_for(notice_type: NoticeType) -> DedupPolicy:
    return DEDUP_POLICIES[notice_type]
