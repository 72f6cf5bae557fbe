from decimal import Decimal

import pytest

from app.notifications.generator import NoticeGenerator, format_amount
from app.notifications.schemas import EntityKind, NoticeType


generator = NoticeGenerator("/dashboard/")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (0, "฿0"),
        (1500, "฿1,500"),
        (Decimal("250000.00"), "฿250,000"),
        (Decimal("1500.5"), "฿1,500.50"),
        (99.99, "฿99.99"),
    ],
)
def test_format_amount(value, expected) -> None:
    assert format_amount(value) == expected


def test_task_notices_pluralize_days() -> None:
    assert generator.task_overdue("U1", "Report", "T1", 1).message == 'Task "Report" is 1 day overdue'
    assert generator.task_overdue("U1", "Report", "T1", 14).message == 'Task "Report" is 14 days overdue'
    assert (
        generator.deal_close_approaching("U1", "Big Deal", "D1", 1).message
        == 'Deal "Big Deal" is scheduled to close in 1 day'
    )


def test_task_assigned_links_to_task_board() -> None:
    draft = generator.task_assigned("U2", "Send quote", "T7", "Alice Adams")

    assert draft.notice_type == NoticeType.TASK_ASSIGNED
    assert draft.title == "New Task Assigned"
    assert draft.message == 'You have been assigned a new task: "Send quote" by Alice Adams'
    assert draft.entity_kind == EntityKind.TASK
    assert draft.action_ref == "/dashboard/tasks"
    assert draft.priority is None


def test_deal_notices_carry_formatted_value() -> None:
    lost = generator.deal_lost("U1", "Renewal", "D3", Decimal("120000"))
    high = generator.deal_high_value("U1", "Renewal", "D3", Decimal("120000.25"))

    assert lost.message == 'Deal "Renewal" (฿120,000) has been marked as lost'
    assert high.message == 'High-value deal "Renewal" (฿120,000.25) requires attention'
    assert lost.action_ref == "/dashboard/deals/D3"
    assert lost.metadata.to_json() == '{"value": "120000"}'


def test_meeting_and_activity_notices() -> None:
    meeting = generator.meeting_today("U1", "Kickoff", "09:30 AM", "A1")
    added = generator.activity_added("U1", "Call log", "A2")
    added_by = generator.activity_added("U1", "Call log", "A2", added_by="Bob")

    assert meeting.message == 'You have a meeting today: "Kickoff" at 09:30 AM'
    assert meeting.entity_kind == EntityKind.ACTIVITY
    assert added.message == 'New activity "Call log" was added'
    assert added_by.message == 'New activity "Call log" was added by Bob'


def test_reassignment_messages_depend_on_recipient() -> None:
    request = generator.reassignment_requested(
        "U2",
        lead_id="L1",
        lead_name="Dana Scully",
        requesting_user_id="U1",
        requesting_user_name="Alice",
        requested_assignee_id="U2",
        requested_user_name="Bob",
    )
    to_owner = generator.reassignment_approved("U2", "L1", "Dana Scully", "U2", "Bob", "U3")
    to_requester = generator.reassignment_approved("U1", "L1", "Dana Scully", "U2", "Bob", "U3")
    rejected = generator.reassignment_rejected("U1", "L1", "Dana Scully", "U2")

    assert request.message == 'Alice wants to reassign lead "Dana Scully" to Bob'
    assert request.action_ref == "/dashboard/leads/reassignment-requests"
    assert '"leadId": "L1"' in request.metadata.to_json()
    assert to_owner.message == "You have been assigned the lead: Dana Scully"
    assert to_requester.message == "Dana Scully has been reassigned to Bob"
    assert rejected.message == "Your request to reassign Dana Scully has been rejected"


def test_mention_and_system_alert() -> None:
    mention = generator.mention("U2", "L1", "Dana Scully", "Alice", note_excerpt="please check")
    alert = generator.system_alert("U1", "Backup finished", "Nightly backup completed", {"job": "nightly"})

    assert mention.message == "Alice mentioned you in a note on lead: Dana Scully"
    assert alert.entity_kind == EntityKind.SYSTEM
    assert alert.entity_id is None
    assert alert.metadata.to_json() == '{"job": "nightly"}'


def test_templates_are_deterministic() -> None:
    first = generator.deal_stage_changed("U1", "Renewal", "D3", "proposal", "negotiation")
    second = NoticeGenerator("/dashboard").deal_stage_changed("U1", "Renewal", "D3", "proposal", "negotiation")

    assert first == second
    assert first.message == 'Deal "Renewal" moved from proposal to negotiation'
