from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.context import reset_correlation_id, set_correlation_id
from app.core.auth import ActorUser, get_current_actor
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.logging import JsonLogFormatter
from app.main import app


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


@pytest.fixture(autouse=True)
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_actor(request: Request) -> ActorUser:
        return ActorUser(
            user_id="user-1",
            tenant_id="tenant-1",
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = override_get_current_actor
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.post(f"/api/notifications/{uuid.uuid4()}/read", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 200

    records = [record for record in caplog.records if record.name == "app.request" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "POST"
        and getattr(record, "path", None) == "/api/notifications/{id}/read"
        and getattr(record, "status_code", None) == 200
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_notice_logs_carry_request_context(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.post(
        "/api/notifications",
        json={"type": "system_alert", "title": "Quota", "message": "Mailbox almost full"},
        headers={"X-Correlation-Id": "corr-notice-1"},
    )
    assert response.status_code == 201

    created = [record for record in caplog.records if record.getMessage() == "notice.created"]
    assert created
    assert getattr(created[-1], "correlation_id", None) == "corr-notice-1"
    assert getattr(created[-1], "notice_type", None) == "system_alert"
    assert getattr(created[-1], "recipient_id", None) == "user-1"


def test_health_requests_log_at_debug(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    assert client.get("/health").status_code == 200

    assert not [
        record
        for record in caplog.records
        if record.name == "app.request" and getattr(record, "path", None) == "/health"
    ]


def test_json_formatter_keeps_known_fields_only() -> None:
    token = set_correlation_id("corr-fmt-1")
    try:
        record = logging.getLogger("app.notifications.store").makeRecord(
            "app.notifications.store",
            logging.WARNING,
            __file__,
            1,
            "notice_store.failure",
            (),
            None,
            extra={"operation": "create", "error": "x" * 900, "password": "hunter2"},
        )
        payload = json.loads(JsonLogFormatter().format(record))
    finally:
        reset_correlation_id(token)

    assert payload["msg"] == "notice_store.failure"
    assert payload["level"] == "WARNING"
    assert payload["fields"]["operation"] == "create"
    assert len(payload["fields"]["error"]) == 500
    assert "password" not in payload["fields"]
