from __future__ import annotations

import logging
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import events
from app.core.database import Base
from app.notifications.generator import NoticeGenerator
from app.notifications.models import Notice
from app.notifications.schemas import EntityKind, NoticePriority, NoticeType
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
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture()
def service(clock: FakeClock) -> NotificationService:
    return NotificationService(clock=clock, generator=NoticeGenerator("/dashboard"))


def _count(session: Session, **filters: str) -> int:
    stmt = select(func.count(Notice.id))
    for key, value in filters.items():
        stmt = stmt.where(getattr(Notice, key) == value)
    return int(session.scalar(stmt) or 0)


def test_identical_notice_inside_window_is_stored_once(db_session: Session, service: NotificationService) -> None:
    draft = service.generator.task_assigned("U1", "Call back", "T1", "Alice")

    first = service.create_notice(db_session, draft)
    second = service.create_notice(db_session, draft)

    assert first is not None
    assert second is None
    assert _count(db_session, recipient_id="U1") == 1


def test_same_notice_after_window_expiry_is_stored_again(
    db_session: Session,
    service: NotificationService,
    clock: FakeClock,
) -> None:
    draft = service.generator.task_assigned("U1", "Call back", "T1", "Alice")
    assert service.create_notice(db_session, draft) is not None

    clock.advance(minutes=61)
    assert service.create_notice(db_session, draft) is not None
    assert _count(db_session, recipient_id="U1") == 2


def test_entity_match_suppresses_even_when_content_differs(db_session: Session, service: NotificationService) -> None:
    assert service.create_notice(db_session, service.generator.task_overdue("U1", "Report", "T9", 1)) is not None
    assert service.create_notice(db_session, service.generator.task_overdue("U1", "Report", "T9", 7)) is None
    assert _count(db_session, notice_type="task_overdue") == 1


def test_content_match_applies_without_entity(db_session: Session, service: NotificationService) -> None:
    alert = service.generator.system_alert("U1", "Maintenance", "Service restarts at 22:00")

    assert service.create_notice(db_session, alert) is not None
    assert service.create_notice(db_session, alert) is None

    other = service.generator.system_alert("U1", "Maintenance", "Service restarts at 23:00")
    assert service.create_notice(db_session, other) is not None
    assert _count(db_session, notice_type="system_alert") == 2


def test_other_recipient_is_not_suppressed(db_session: Session, service: NotificationService) -> None:
    assert service.create_notice(db_session, service.generator.task_due_today("U1", "Demo", "T1")) is not None
    assert service.create_notice(db_session, service.generator.task_due_today("U2", "Demo", "T1")) is not None


def test_deal_close_reminder_replaces_and_task_reminder_suppresses(
    db_session: Session,
    service: NotificationService,
    clock: FakeClock,
) -> None:
    generator = service.generator
    assert service.create_notice(db_session, generator.deal_close_approaching("U1", "Big Deal", "D1", 3)) is not None
    assert service.create_notice(db_session, generator.task_due_today("U1", "Prep deck", "D1")) is not None

    clock.advance(minutes=30)
    assert service.create_notice(db_session, generator.task_due_today("U1", "Prep deck", "D1")) is None
    assert _count(db_session, notice_type="task_due_today") == 1

    clock.advance(minutes=30)
    fresh_id = service.create_notice(db_session, generator.deal_close_approaching("U1", "Big Deal", "D1", 2))
    assert fresh_id is not None

    rows = db_session.scalars(select(Notice).where(Notice.notice_type == "deal_close_approaching")).all()
    assert [row.id for row in rows] == [fresh_id]
    assert rows[0].message == 'Deal "Big Deal" is scheduled to close in 2 days'
    assert '"days_until_close": 2' in (rows[0].metadata_json or "")


def test_priority_defaults_and_override(db_session: Session, service: NotificationService) -> None:
    default_id = service.create_notice(db_session, service.generator.meeting_today("U1", "Standup", "09:30 AM", "T1"))
    override_id = service.create(
        db_session,
        notice_type=NoticeType.SYSTEM_ALERT,
        recipient_id="U1",
        title="Heads up",
        message="Quota reached",
        priority=NoticePriority.LOW,
    )

    assert db_session.get(Notice, default_id).priority == "urgent"
    assert db_session.get(Notice, override_id).priority == "low"


def test_create_publishes_notice_created_event(db_session: Session, service: NotificationService) -> None:
    events.published_events.clear()
    notice_id = service.create(
        db_session,
        notice_type=NoticeType.DEAL_ASSIGNED,
        recipient_id="U1",
        title="New Deal Assigned",
        message="You have a new deal",
        entity_kind=EntityKind.DEAL,
        entity_id="D5",
        metadata={"assigned_by": "Bob"},
    )

    assert notice_id is not None
    published = [item for item in events.published_events if item["event_type"] == "notifications.notice.created"]
    assert published[-1]["payload"]["notice_id"] == str(notice_id)
    assert published[-1]["payload"]["priority"] == "medium"


def test_reassignment_request_requires_lead_and_assignee_metadata(
    db_session: Session,
    service: NotificationService,
) -> None:
    with pytest.raises(ValueError, match="reassignment_requested"):
        service.create(
            db_session,
            notice_type=NoticeType.REASSIGNMENT_REQUESTED,
            recipient_id="U2",
            title="Lead Reassignment Request",
            message="A wants lead L1",
            entity_kind=EntityKind.LEAD,
            entity_id="L1",
            metadata={"requestingUserId": "U1"},
        )
    assert _count(db_session) == 0


def test_missing_table_is_non_fatal(
    db_session: Session,
    service: NotificationService,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.WARNING)
    Notice.__table__.drop(bind=db_session.get_bind())

    assert service.create_notice(db_session, service.generator.task_due_today("U1", "Demo", "T1")) is None
    assert service.list_notices(db_session, "U1") == []
    assert service.unread_count(db_session, "U1") == 0
    assert service.mark_all_read(db_session, "U1") is False
    assert service.clear_all(db_session, "U1") is False

    failures = [record for record in caplog.records if record.getMessage() == "notice_store.failure"]
    operations = {getattr(record, "operation", None) for record in failures}
    assert {"find_duplicate", "create", "list_for_user", "unread_count"} <= operations

    Notice.__table__.create(bind=db_session.get_bind())


def test_dedup_fails_open_when_lookup_errors(
    db_session: Session,
    service: NotificationService,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def broken_lookup(*args: object, **kwargs: object) -> None:
        raise OperationalError("SELECT notifications_notice", {}, Exception("connection reset"))

    monkeypatch.setattr(service.store, "find_recent_entity_match", broken_lookup)
    draft = service.generator.task_due_today("U1", "Demo", "T1")

    assert service.create_notice(db_session, draft) is not None
    assert service.create_notice(db_session, draft) is not None
    assert _count(db_session, recipient_id="U1") == 2
