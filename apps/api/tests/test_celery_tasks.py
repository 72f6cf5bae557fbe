from __future__ import annotations

from collections.abc import Generator
from datetime import timedelta

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core import celery_app as tasks
from app.core.database import Base
from app.crm.models import CRMTask
from app.notifications.models import Notice, utcnow


@pytest.fixture()
def session_factory(monkeypatch: pytest.MonkeyPatch) -> Generator[sessionmaker[Session], None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr(tasks, "SessionLocal", SessionLocal)
    try:
        yield SessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)


def test_reminder_task_returns_scan_summary(session_factory: sessionmaker[Session]) -> None:
    with session_factory() as session:
        session.add(CRMTask(title="Prep deck", due_date=utcnow().date(), assigned_to_user_id="U1"))
        session.commit()

    summary = tasks.run_reminder_checks()

    assert summary["due_today"] == 1
    assert set(summary) == {
        "stale_removed",
        "overdue",
        "due_today",
        "due_tomorrow",
        "meetings",
        "deals_closing",
        "high_value",
    }


def test_cleanup_task_accepts_plain_arguments(session_factory: sessionmaker[Session]) -> None:
    now = utcnow()
    with session_factory() as session:
        for offset in range(3):
            session.add(
                Notice(
                    recipient_id="U1",
                    notice_type="task_overdue",
                    title="Task Overdue",
                    message=f"copy {offset}",
                    entity_kind="task",
                    entity_id="T1",
                    created_at=now - timedelta(minutes=offset),
                )
            )
        session.commit()

    assert tasks.cleanup_duplicates("U1", "task_overdue", "T1") == 2

    with session_factory() as session:
        assert session.scalars(select(Notice.message)).all() == ["copy 0"]
