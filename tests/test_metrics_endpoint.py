from __future__ import annotations

from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient

from crmdesk.core.config import get_settings


@pytest.fixture()
def metrics_enabled(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()


def test_metrics_disabled_by_default(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, set_actor = client
    set_actor("admin")

    response = test_client.get("/metrics")

    assert response.status_code == 404


def test_metrics_endpoint_exposes_http_and_primary_flag_metrics(
    metrics_enabled: None,
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    health = test_client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"

    contact = test_client.post(
        "/api/crm/contacts",
        json={"first_name": "Metric", "last_name": "Person", "emails": ["metric@example.com"]},
    )
    assert contact.status_code == 201

    set_actor("admin")
    metrics = test_client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "crm_primary_flag_changes_total" in body
    assert 'path="/health"' in body
    assert 'path="/api/crm/contacts"' in body
    assert 'entity="contact_email"' in body


def test_metrics_require_permission(
    metrics_enabled: None,
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    set_actor("alice")

    assert test_client.get("/metrics").status_code == 403


def test_me_reports_actor_permissions(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, set_actor = client
    set_actor("reader")

    response = test_client.get("/me")
    assert response.status_code == 200
    assert response.json()["permissions"] == ["crm.companies.read", "crm.contacts.read"]

    set_actor("anonymous")
    assert test_client.get("/me").status_code == 401
