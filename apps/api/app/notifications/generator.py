from __future__ import annotations

from decimal import Decimal

from app.notifications.schemas import (
    ActivityAddedMetadata,
    AssignedByMetadata,
    DealCloseApproachingMetadata,
    DealStageChangedMetadata,
    DealValueMetadata,
    EmptyMetadata,
    EntityKind,
    MeetingTodayMetadata,
    MentionMetadata,
    NoticeDraft,
    NoticeType,
    ReassignmentApprovedMetadata,
    ReassignmentRejectedMetadata,
    ReassignmentRequestedMetadata,
    SystemAlertMetadata,
    TaskOverdueMetadata,
)


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"


def format_amount(value: Decimal | int | float) -> str:
    amount = Decimal(str(value))
    if amount == amount.to_integral_value():
        return f"฿{amount:,.0f}"
    return f"฿{amount:,.2f}"


class NoticeGenerator:
    """Catalog of notice templates, one method per notice type.

    Every method is a pure function of its arguments so that identical events
    render identical titles and messages, which the content-match dedup rule
    relies on. Nothing here reads the clock or touches the database.
    """

    def __init__(self, action_base_path: str = "/dashboard"):
        self.base = action_base_path.rstrip("/")

    def task_assigned(self, recipient_id: str, task_title: str, task_id: str, assigned_by: str) -> NoticeDraft:
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.TASK_ASSIGNED,
            title="New Task Assigned",
            message=f'You have been assigned a new task: "{task_title}" by {assigned_by}',
            entity_kind=EntityKind.TASK,
            entity_id=task_id,
            action_ref=f"{self.base}/tasks",
            metadata=AssignedByMetadata(assigned_by=assigned_by),
        )

    def task_overdue(self, recipient_id: str, task_title: str, task_id: str, days_past_due: int) -> NoticeDraft:
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.TASK_OVERDUE,
            title="Task Overdue",
            message=f'Task "{task_title}" is {_plural(days_past_due, "day")} overdue',
            entity_kind=EntityKind.TASK,
            entity_id=task_id,
            action_ref=f"{self.base}/tasks",
            metadata=TaskOverdueMetadata(days_past_due=days_past_due),
        )

    def task_due_today(self, recipient_id: str, task_title: str, task_id: str) -> NoticeDraft:
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.TASK_DUE_TODAY,
            title="Task Due Today",
            message=f'Task "{task_title}" is due today',
            entity_kind=EntityKind.TASK,
            entity_id=task_id,
            action_ref=f"{self.base}/tasks",
            metadata=EmptyMetadata(),
        )

    def task_due_tomorrow(self, recipient_id: str, task_title: str, task_id: str) -> NoticeDraft:
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.TASK_DUE_TOMORROW,
            title="Task Due Tomorrow",
            message=f'Task "{task_title}" is due tomorrow',
            entity_kind=EntityKind.TASK,
            entity_id=task_id,
            action_ref=f"{self.base}/tasks",
            metadata=EmptyMetadata(),
        )

    def deal_assigned(self, recipient_id: str, deal_title: str, deal_id: str, assigned_by: str) -> NoticeDraft:
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.DEAL_ASSIGNED,
            title="New Deal Assigned",
            message=f'You have been assigned a new deal: "{deal_title}" by {assigned_by}',
            entity_kind=EntityKind.DEAL,
            entity_id=deal_id,
            action_ref=f"{self.base}/deals/{deal_id}",
            metadata=AssignedByMetadata(assigned_by=assigned_by),
        )

    def deal_stage_changed(
        self,
        recipient_id: str,
        deal_title: str,
        deal_id: str,
        from_stage: str,
        to_stage: str,
    ) -> NoticeDraft:
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.DEAL_STAGE_CHANGED,
            title="Deal Stage Changed",
            message=f'Deal "{deal_title}" moved from {from_stage} to {to_stage}',
            entity_kind=EntityKind.DEAL,
            entity_id=deal_id,
            action_ref=f"{self.base}/deals/{deal_id}",
            metadata=DealStageChangedMetadata(from_stage=from_stage, to_stage=to_stage),
        )

    def deal_lost(self, recipient_id: str, deal_title: str, deal_id: str, value: Decimal) -> NoticeDraft:
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.DEAL_LOST,
            title="Deal Lost",
            message=f'Deal "{deal_title}" ({format_amount(value)}) has been marked as lost',
            entity_kind=EntityKind.DEAL,
            entity_id=deal_id,
            action_ref=f"{self.base}/deals/{deal_id}",
            metadata=DealValueMetadata(value=Decimal(value)),
        )

    def deal_high_value(self, recipient_id: str, deal_title: str, deal_id: str, value: Decimal) -> NoticeDraft:
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.DEAL_HIGH_VALUE,
            title="High-Value Deal",
            message=f'High-value deal "{deal_title}" ({format_amount(value)}) requires attention',
            entity_kind=EntityKind.DEAL,
            entity_id=deal_id,
            action_ref=f"{self.base}/deals/{deal_id}",
            metadata=DealValueMetadata(value=Decimal(value)),
        )

    def deal_close_approaching(
        self,
        recipient_id: str,
        deal_title: str,
        deal_id: str,
        days_until_close: int,
    ) -> NoticeDraft:
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.DEAL_CLOSE_APPROACHING,
            title="Deal Close Date Approaching",
            message=f'Deal "{deal_title}" is scheduled to close in {_plural(days_until_close, "day")}',
            entity_kind=EntityKind.DEAL,
            entity_id=deal_id,
            action_ref=f"{self.base}/deals/{deal_id}",
            metadata=DealCloseApproachingMetadata(days_until_close=days_until_close),
        )

    def meeting_today(self, recipient_id: str, meeting_title: str, meeting_time: str, activity_id: str) -> NoticeDraft:
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.MEETING_TODAY,
            title="Meeting Today",
            message=f'You have a meeting today: "{meeting_title}" at {meeting_time}',
            entity_kind=EntityKind.ACTIVITY,
            entity_id=activity_id,
            action_ref=f"{self.base}/tasks",
            metadata=MeetingTodayMetadata(meeting_time=meeting_time),
        )

    def activity_missed(self, recipient_id: str, activity_title: str, activity_id: str) -> NoticeDraft:
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.ACTIVITY_MISSED,
            title="Missed Activity",
            message=f'You missed the activity: "{activity_title}"',
            entity_kind=EntityKind.ACTIVITY,
            entity_id=activity_id,
            action_ref=f"{self.base}/tasks",
            metadata=EmptyMetadata(),
        )

    def activity_added(
        self,
        recipient_id: str,
        activity_title: str,
        activity_id: str,
        added_by: str | None = None,
    ) -> NoticeDraft:
        by = f" by {added_by}" if added_by else ""
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.ACTIVITY_ADDED,
            title="Activity Added",
            message=f'New activity "{activity_title}" was added{by}',
            entity_kind=EntityKind.ACTIVITY,
            entity_id=activity_id,
            action_ref=f"{self.base}/activities",
            metadata=ActivityAddedMetadata(added_by=added_by),
        )

    def system_alert(
        self,
        recipient_id: str,
        title: str,
        message: str,
        details: dict[str, object] | None = None,
    ) -> NoticeDraft:
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.SYSTEM_ALERT,
            title=title,
            message=message,
            entity_kind=EntityKind.SYSTEM,
            metadata=SystemAlertMetadata(**(details or {})),
        )

    def reassignment_requested(
        self,
        recipient_id: str,
        lead_id: str,
        lead_name: str,
        requesting_user_id: str,
        requesting_user_name: str,
        requested_assignee_id: str,
        requested_user_name: str,
        reason: str | None = None,
        current_owner_id: str | None = None,
    ) -> NoticeDraft:
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.REASSIGNMENT_REQUESTED,
            title="Lead Reassignment Request",
            message=f'{requesting_user_name} wants to reassign lead "{lead_name}" to {requested_user_name}',
            entity_kind=EntityKind.LEAD,
            entity_id=lead_id,
            action_ref=f"{self.base}/leads/reassignment-requests",
            metadata=ReassignmentRequestedMetadata(
                lead_id=lead_id,
                lead_name=lead_name,
                requested_assignee_id=requested_assignee_id,
                requested_user_name=requested_user_name,
                requesting_user_id=requesting_user_id,
                requesting_user_name=requesting_user_name,
                current_owner_id=current_owner_id,
                reason=reason,
            ),
        )

    def reassignment_approved(
        self,
        recipient_id: str,
        lead_id: str,
        lead_name: str,
        new_owner_id: str,
        new_owner_name: str,
        approved_by: str,
    ) -> NoticeDraft:
        if recipient_id == new_owner_id:
            message = f"You have been assigned the lead: {lead_name}"
        else:
            message = f"{lead_name} has been reassigned to {new_owner_name}"
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.REASSIGNMENT_APPROVED,
            title="Lead reassignment approved",
            message=message,
            entity_kind=EntityKind.LEAD,
            entity_id=lead_id,
            action_ref=f"{self.base}/leads?highlight={lead_id}",
            metadata=ReassignmentApprovedMetadata(
                lead_id=lead_id,
                new_owner_id=new_owner_id,
                new_owner_name=new_owner_name,
                approved_by=approved_by,
            ),
        )

    def reassignment_rejected(
        self,
        recipient_id: str,
        lead_id: str,
        lead_name: str,
        rejected_by: str,
        reason: str | None = None,
    ) -> NoticeDraft:
        message = f"Your request to reassign {lead_name} has been rejected"
        if reason:
            message = f"{message}: {reason}"
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.REASSIGNMENT_REJECTED,
            title="Lead reassignment rejected",
            message=message,
            entity_kind=EntityKind.LEAD,
            entity_id=lead_id,
            action_ref=f"{self.base}/leads?highlight={lead_id}",
            metadata=ReassignmentRejectedMetadata(lead_id=lead_id, rejected_by=rejected_by, reason=reason),
        )

    def mention(
        self,
        recipient_id: str,
        lead_id: str,
        lead_name: str,
        mentioned_by: str,
        note_excerpt: str | None = None,
    ) -> NoticeDraft:
        return NoticeDraft(
            recipient_id=recipient_id,
            notice_type=NoticeType.MENTION,
            title="You were mentioned in a note",
            message=f"{mentioned_by} mentioned you in a note on lead: {lead_name}",
            entity_kind=EntityKind.LEAD,
            entity_id=lead_id,
            action_ref=f"{self.base}/leads?highlight={lead_id}",
            metadata=MentionMetadata(mentioned_by=mentioned_by, lead_id=lead_id, note_excerpt=note_excerpt),
        )
