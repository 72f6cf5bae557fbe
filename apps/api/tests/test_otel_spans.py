from __future__ import annotations

import os
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from app.core.auth import ActorUser, get_current_actor
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import CRMLead, CRMUserProfile
from app.main import app
from app.otel import setup_inmemory_otel


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
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("api")
    exporter.clear()
    return exporter


@pytest.fixture()
def client(db_session: Session) -> Generator[tuple[TestClient, dict[str, str]], None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    state = {"current": "user-a"}

    def override_get_current_actor(request: Request) -> ActorUser:
        return ActorUser(
            user_id=state["current"],
            tenant_id="tenant-1",
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = override_get_current_actor
    with TestClient(app) as test_client:
        yield test_client, state
    app.dependency_overrides.clear()


def test_request_span_contains_correlation_id(
    client: tuple[TestClient, dict[str, str]],
    span_exporter: InMemorySpanExporter,
) -> None:
    test_client, _ = client
    response = test_client.get("/api/notifications", headers={"X-Correlation-Id": "otel-corr-1", "X-Tenant-Id": "t-9"})
    assert response.status_code == 200

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)
    assert any(span.attributes.get("tenant_id") == "t-9" for span in spans)


def test_approval_span_contains_notice_and_correlation(
    client: tuple[TestClient, dict[str, str]],
    db_session: Session,
    span_exporter: InMemorySpanExporter,
) -> None:
    test_client, state = client
    db_session.add_all(
        [
            CRMUserProfile(id="user-a", tenant_id="tenant-1", first_name="Alice"),
            CRMUserProfile(id="user-b", tenant_id="tenant-1", first_name="Bob"),
        ]
    )
    lead = CRMLead(tenant_id="tenant-1", company_name="Acme Lead", owner_user_id="user-a")
    db_session.add(lead)
    db_session.commit()

    requested = test_client.post(f"/api/leads/{lead.id}/reassignment-requests", json={"requested_assignee_id": "user-b"})
    assert requested.status_code == 201
    [notice_id] = requested.json()["notice_ids"]

    state["current"] = "user-b"
    approved = test_client.post(f"/api/notifications/{notice_id}/approve", headers={"X-Correlation-Id": "otel-approve-1"})
    assert approved.status_code == 200

    spans = span_exporter.get_finished_spans()
    approve_spans = [span for span in spans if span.name == "notifications.reassignment.approve"]
    assert approve_spans
    assert any(
        span.attributes.get("notice_id") == notice_id and span.attributes.get("correlation_id") == "otel-approve-1"
        for span in approve_spans
    )
    assert any(span.name == "crm.assign_lead_owner" for span in spans)
