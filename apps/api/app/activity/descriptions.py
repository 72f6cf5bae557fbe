from __future__ import annotations

from collections.abc import Callable, Mapping
from enum import StrEnum
from typing import Any

from app.notifications.generator import format_amount


class ActivityActionType(StrEnum):
    DEAL_CREATED = "deal_created"
    DEAL_UPDATED = "deal_updated"
    DEAL_DELETED = "deal_deleted"
    DEAL_STAGE_CHANGED = "deal_stage_changed"
    DEAL_VALUE_CHANGED = "deal_value_changed"
    DEAL_ASSIGNED = "deal_assigned"
    DEAL_REASSIGNED = "deal_reassigned"
    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    TASK_DELETED = "task_deleted"
    TASK_STATUS_CHANGED = "task_status_changed"
    TASK_COMPLETED = "task_completed"
    TASK_MOVED = "task_moved"
    TASK_ASSIGNED = "task_assigned"
    TASK_REASSIGNED = "task_reassigned"
    CONTACT_CREATED = "contact_created"
    CONTACT_UPDATED = "contact_updated"
    CONTACT_DELETED = "contact_deleted"
    COMPANY_CREATED = "company_created"
    COMPANY_UPDATED = "company_updated"
    COMPANY_DELETED = "company_deleted"
    LEAD_CREATED = "lead_created"
    LEAD_UPDATED = "lead_updated"
    LEAD_DELETED = "lead_deleted"
    LEAD_STATUS_CHANGED = "lead_status_changed"
    LEAD_CONVERTED = "lead_converted"
    LEAD_REASSIGNMENT_REQUESTED = "lead_reassignment_requested"
    LEAD_REASSIGNED = "lead_reassigned"


class ActivityEntityKind(StrEnum):
    DEAL = "deal"
    TASK = "task"
    CONTACT = "contact"
    COMPANY = "company"
    LEAD = "lead"


Template = Callable[[str, Mapping[str, Any]], str]


def _value(raw: Any) -> str:
    try:
        return format_amount(raw or 0)
    except (ArithmeticError, TypeError, ValueError):
        return format_amount(0)


def _get(metadata: Mapping[str, Any], key: str, default: str = "Unknown") -> str:
    value = metadata.get(key)
    return str(value) if value not in (None, "") else default


_TEMPLATES: dict[ActivityActionType, Template] = {
    ActivityActionType.DEAL_CREATED: lambda t, m: f"Created new deal: {t}",
    ActivityActionType.DEAL_UPDATED: lambda t, m: f"Updated deal: {t}",
    ActivityActionType.DEAL_DELETED: lambda t, m: f"Deleted deal: {t}",
    ActivityActionType.DEAL_STAGE_CHANGED: lambda t, m: (
        f'Moved deal "{t}" from {_get(m, "from_stage")} to {_get(m, "to_stage")}'
    ),
    ActivityActionType.DEAL_VALUE_CHANGED: lambda t, m: (
        f'Changed deal value for "{t}" from {_value(m.get("from_value"))} to {_value(m.get("to_value"))}'
    ),
    ActivityActionType.DEAL_ASSIGNED: lambda t, m: f'Assigned deal "{t}" to {_get(m, "assigned_to_name", "team member")}',
    ActivityActionType.DEAL_REASSIGNED: lambda t, m: (
        f'Reassigned deal "{t}" from {_get(m, "from_assignee")} to {_get(m, "to_assignee")}'
    ),
    ActivityActionType.TASK_CREATED: lambda t, m: f"Created new task: {t}",
    ActivityActionType.TASK_UPDATED: lambda t, m: f"Updated task: {t}",
    ActivityActionType.TASK_DELETED: lambda t, m: f"Deleted task: {t}",
    ActivityActionType.TASK_STATUS_CHANGED: lambda t, m: (
        f'Changed task "{t}" status from {_get(m, "from_status")} to {_get(m, "to_status")}'
    ),
    ActivityActionType.TASK_COMPLETED: lambda t, m: f"Completed task: {t}",
    ActivityActionType.TASK_MOVED: lambda t, m: f'Moved task "{t}" to {_get(m, "to_status")}',
    ActivityActionType.TASK_ASSIGNED: lambda t, m: f'Assigned task "{t}" to {_get(m, "assigned_to_name", "team member")}',
    ActivityActionType.TASK_REASSIGNED: lambda t, m: (
        f'Reassigned task "{t}" from {_get(m, "from_assignee")} to {_get(m, "to_assignee")}'
    ),
    ActivityActionType.CONTACT_CREATED: lambda t, m: f"Added new contact: {t}",
    ActivityActionType.CONTACT_UPDATED: lambda t, m: f"Updated contact: {t}",
    ActivityActionType.CONTACT_DELETED: lambda t, m: f"Deleted contact: {t}",
    ActivityActionType.COMPANY_CREATED: lambda t, m: f"Added new company: {t}",
    ActivityActionType.COMPANY_UPDATED: lambda t, m: f"Updated company: {t}",
    ActivityActionType.COMPANY_DELETED: lambda t, m: f"Deleted company: {t}",
    ActivityActionType.LEAD_CREATED: lambda t, m: f"Created new lead: {t}",
    ActivityActionType.LEAD_UPDATED: lambda t, m: f"Updated lead: {t}",
    ActivityActionType.LEAD_DELETED: lambda t, m: f"Deleted lead: {t}",
    ActivityActionType.LEAD_STATUS_CHANGED: lambda t, m: (
        f'Changed lead "{t}" status from {_get(m, "from_status")} to {_get(m, "to_status")}'
    ),
    ActivityActionType.LEAD_CONVERTED: lambda t, m: f'Converted lead "{t}" to deal: {_get(m, "deal_title", "New Deal")}',
    ActivityActionType.LEAD_REASSIGNMENT_REQUESTED: lambda t, m: (
        f'Requested reassignment of lead "{t}" to {_get(m, "requested_user_name", "team member")}'
    ),
    ActivityActionType.LEAD_REASSIGNED: lambda t, m: (
        f'Reassigned lead "{t}" from {_get(m, "from_assignee")} to {_get(m, "to_assignee")}'
    ),
}


def _ensure_templates_are_total() -> None:
    missing = [item.value for item in ActivityActionType if item not in _TEMPLATES]
    if missing:
        raise RuntimeError(f"activity action types without a description template: {missing}")


_ensure_templates_are_total()


def describe_activity(action_type: str, entity_title: str | None, metadata: Mapping[str, Any] | None = None) -> str:
    """Render the human-readable line for an activity entry.

    Unknown action types never fail; they render as ``"<Title Cased Action>: <title>"``.
    """
    title = entity_title or ""
    try:
        template = _TEMPLATES[ActivityActionType(action_type)]
    except ValueError:
        return f"{action_type.replace('_', ' ').title()}: {title}"
    return template(title, metadata or {})
