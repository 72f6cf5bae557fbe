from __future__ import annotations

import json
import logging
from collections.abc import Generator
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.activity.descriptions import ActivityActionType, ActivityEntityKind, describe_activity
from app.activity.models import ActivityLogEntry, ImmutableRecordError
from app.activity.service import ActivityRecorder
from app.core.database import Base
from app.crm.models import CRMDeal, CRMTask, CRMUserProfile
from app.notifications.generator import NoticeGenerator
from app.notifications.models import Notice
from app.notifications.service import NotificationService


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    session.add_all(
        [
            CRMUserProfile(id="U1", tenant_id="T1", first_name="Alice", last_name="Adams"),
            CRMUserProfile(id="U2", tenant_id="T1", first_name="Bob", last_name="Brown"),
            CRMUserProfile(id="U9", tenant_id="T9", first_name="Zed"),
        ]
    )
    session.commit()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture()
def recorder(clock: FakeClock) -> ActivityRecorder:
    notifications = NotificationService(clock=clock, generator=NoticeGenerator("/dashboard"))
    return ActivityRecorder(notifications=notifications, clock=clock)


@pytest.mark.parametrize(
    ("action_type", "title", "metadata", "expected"),
    [
        ("deal_created", "Renewal", None, "Created new deal: Renewal"),
        (
            "deal_stage_changed",
            "Renewal",
            {"from_stage": "proposal", "to_stage": "won"},
            'Moved deal "Renewal" from proposal to won',
        ),
        (
            "deal_value_changed",
            "Renewal",
            {"from_value": 1000, "to_value": "2500.5"},
            'Changed deal value for "Renewal" from ฿1,000 to ฿2,500.50',
        ),
        ("deal_value_changed", "Renewal", {"to_value": "n/a"}, 'Changed deal value for "Renewal" from ฿0 to ฿0'),
        ("task_assigned", "Call", {}, 'Assigned task "Call" to team member'),
        ("task_status_changed", "Call", {"to_status": "done"}, 'Changed task "Call" status from Unknown to done'),
        ("contact_created", "Mulder", None, "Added new contact: Mulder"),
        ("lead_converted", "Dana Scully", {}, 'Converted lead "Dana Scully" to deal: New Deal'),
        ("invoice_paid", "INV-7", None, "Invoice Paid: INV-7"),
    ],
)
def test_describe_activity(action_type, title, metadata, expected) -> None:
    assert describe_activity(action_type, title, metadata) == expected


def test_record_resolves_tenant_and_lists_newest_first(
    db_session: Session,
    recorder: ActivityRecorder,
    clock: FakeClock,
) -> None:
    first = recorder.record(
        db_session,
        actor_id="U1",
        action_type=ActivityActionType.CONTACT_CREATED,
        entity_kind=ActivityEntityKind.CONTACT,
        entity_id="C1",
        entity_title="Fox Mulder",
    )
    clock.advance(minutes=1)
    recorder.record(
        db_session,
        actor_id="U1",
        action_type=ActivityActionType.DEAL_CREATED,
        entity_kind=ActivityEntityKind.DEAL,
        entity_id="D1",
        entity_title="Renewal",
        metadata={"value": 1200},
    )
    recorder.record(
        db_session,
        actor_id="U9",
        action_type=ActivityActionType.DEAL_CREATED,
        entity_kind=ActivityEntityKind.DEAL,
        entity_id="D9",
        entity_title="Elsewhere",
    )

    assert first is not None
    assert first.tenant_id == "T1"
    entries = recorder.list_for_tenant(db_session, "T1")
    assert [entry.description for entry in entries] == ["Created new deal: Renewal", "Added new contact: Fox Mulder"]
    assert json.loads(entries[0].metadata_json) == {"value": 1200}
    assert [entry.entity_id for entry in recorder.list_for_tenant(db_session, "T1", entity_kind="contact")] == ["C1"]
    assert len(recorder.list_for_tenant(db_session, "T1", limit=1)) == 1


def test_actor_listing_is_scoped_to_profile_tenant(db_session: Session, recorder: ActivityRecorder) -> None:
    for actor_id, entity_id in (("U1", "D1"), ("U9", "D9"), ("U-NOBODY", "D0")):
        recorder.record(
            db_session,
            actor_id=actor_id,
            action_type=ActivityActionType.DEAL_CREATED,
            entity_kind=ActivityEntityKind.DEAL,
            entity_id=entity_id,
            entity_title=f"Deal {entity_id}",
        )

    assert [entry.entity_id for entry in recorder.list_for_actor(db_session, "U2")] == ["D1"]
    assert [entry.entity_id for entry in recorder.list_for_actor(db_session, "U9")] == ["D9"]
    assert recorder.list_for_actor(db_session, "U-NOBODY") == []
    assert db_session.scalar(select(ActivityLogEntry.tenant_id).where(ActivityLogEntry.entity_id == "D0")) is None


def test_duplicate_entry_inside_guard_window_is_skipped(
    db_session: Session,
    recorder: ActivityRecorder,
    clock: FakeClock,
) -> None:
    kwargs = {
        "actor_id": "U1",
        "action_type": "task_completed",
        "entity_kind": "task",
        "entity_id": "T1",
        "entity_title": "Call back",
    }

    assert recorder.record(db_session, **kwargs) is not None
    clock.advance(minutes=4)
    assert recorder.record(db_session, **kwargs) is None
    assert recorder.record(db_session, **{**kwargs, "actor_id": "U2"}) is not None

    clock.advance(minutes=2)
    assert recorder.record(db_session, **kwargs) is not None
    assert len(db_session.scalars(select(ActivityLogEntry)).all()) == 3


def test_entries_cannot_be_changed_or_deleted(db_session: Session, recorder: ActivityRecorder) -> None:
    entry = recorder.record(
        db_session, actor_id="U1", action_type="lead_created", entity_kind="lead", entity_id="L1", entity_title="Dana"
    )
    assert entry is not None

    entry.description = "tampered"
    with pytest.raises(ImmutableRecordError):
        db_session.commit()
    db_session.rollback()

    db_session.delete(entry)
    with pytest.raises(ImmutableRecordError):
        db_session.commit()
    db_session.rollback()

    stored = db_session.scalars(select(ActivityLogEntry)).one()
    assert stored.description == "Created new lead: Dana"


def test_lost_deal_notifies_owner(db_session: Session, recorder: ActivityRecorder) -> None:
    deal = CRMDeal(title="Renewal", stage="lost", value=Decimal("45000"), owner_user_id="U2", close_date=date(2026, 3, 1))
    db_session.add(deal)
    db_session.commit()

    recorder.record(
        db_session,
        actor_id="U1",
        action_type=ActivityActionType.DEAL_STAGE_CHANGED,
        entity_kind=ActivityEntityKind.DEAL,
        entity_id=str(deal.id),
        entity_title="Renewal",
        metadata={"from_stage": "negotiation", "to_stage": "lost"},
    )

    [notice] = db_session.scalars(select(Notice)).all()
    assert notice.notice_type == "deal_lost"
    assert notice.recipient_id == "U2"
    assert notice.message == 'Deal "Renewal" (฿45,000) has been marked as lost'


def test_created_task_notifies_assignee_but_not_self(db_session: Session, recorder: ActivityRecorder) -> None:
    delegated = CRMTask(title="Send quote", assigned_to_user_id="U2", created_by_user_id="U1")
    own = CRMTask(title="Follow up", assigned_to_user_id="U1", created_by_user_id="U1")
    db_session.add_all([delegated, own])
    db_session.commit()

    for task in (delegated, own):
        recorder.record(
            db_session,
            actor_id="U1",
            action_type=ActivityActionType.TASK_CREATED,
            entity_kind=ActivityEntityKind.TASK,
            entity_id=str(task.id),
            entity_title=task.title,
        )

    [notice] = db_session.scalars(select(Notice)).all()
    assert notice.recipient_id == "U2"
    assert notice.message == 'You have been assigned a new task: "Send quote" by Alice Adams'


def test_notification_failure_keeps_entry(
    db_session: Session,
    recorder: ActivityRecorder,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    task = CRMTask(title="Send quote", assigned_to_user_id="U2", created_by_user_id="U1")
    db_session.add(task)
    db_session.commit()

    def explode(*args: object, **kwargs: object) -> None:
        raise RuntimeError("notice pipeline down")

    monkeypatch.setattr(recorder.notifications, "create_notice", explode)
    caplog.set_level(logging.ERROR)

    entry = recorder.record(
        db_session,
        actor_id="U1",
        action_type="task_created",
        entity_kind="task",
        entity_id=str(task.id),
        entity_title="Send quote",
    )

    assert entry is not None
    assert any(record.getMessage() == "activity.notification_failed" for record in caplog.records)


def test_store_failure_is_not_raised(
    db_session: Session,
    recorder: ActivityRecorder,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def broken_guard(*args: object, **kwargs: object) -> bool:
        raise OperationalError("SELECT activity_log_entry", {}, Exception("disk I/O error"))

    monkeypatch.setattr(recorder, "_recent_duplicate_exists", broken_guard)

    assert recorder.record(db_session, actor_id="U1", action_type="deal_deleted", entity_kind="deal") is None
    assert db_session.scalars(select(ActivityLogEntry)).all() == []
