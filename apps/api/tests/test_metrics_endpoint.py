from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import ActorUser, AuthUser, get_current_actor, get_current_user as auth_get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def roles() -> list[str]:
    return ["system.metrics.read"]


@pytest.fixture()
def client(db_session: Session, roles: list[str]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_actor() -> ActorUser:
        return ActorUser(user_id="metrics-user", tenant_id="tenant-1", correlation_id="metrics-corr-1")

    def override_auth_user() -> AuthUser:
        return AuthUser(sub="metrics-admin", roles=roles)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = override_actor
    app.dependency_overrides[auth_get_current_user] = override_auth_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_and_notice_metrics(client: TestClient) -> None:
    assert client.get("/health").status_code == 200

    payload = {
        "type": "deal_high_value",
        "title": "High-Value Deal",
        "message": "Renewal needs attention",
        "entity_kind": "deal",
        "entity_id": "deal-9",
        "metadata": {"value": "150000"},
    }
    assert client.post("/api/notifications", json=payload).status_code == 201
    assert client.post("/api/notifications", json=payload).status_code == 200
    notice_id = client.get("/api/notifications").json()[0]["id"]
    assert client.post(f"/api/notifications/{notice_id}/read").status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert 'notices_created_total{notice_type="deal_high_value"}' in body
    assert 'notices_suppressed_total{notice_type="deal_high_value",rule="entity"}' in body
    assert "reassignment_transitions_total" in body
    assert 'path="/health"' in body
    assert 'path="/api/notifications/{id}/read"' in body


@pytest.mark.parametrize("roles", [["user"]])
def test_metrics_endpoint_requires_permission(client: TestClient) -> None:
    response = client.get("/metrics")
    assert response.status_code == 403


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    assert client.get("/metrics").status_code == 404
