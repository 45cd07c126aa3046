from __future__ import annotations

import logging
from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient


def test_logs_include_correlation_id_for_http(
    client: tuple[TestClient, Callable[[str], None]],
    caplog: pytest.LogCaptureFixture,
) -> None:
    test_client, _ = client
    caplog.set_level(logging.INFO)

    response = test_client.get("/api/crm/contacts/999", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [
        record for record in caplog.records if record.name == "crmdesk.request" and record.getMessage() == "http.request"
    ]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/crm/contacts/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_primary_flag_changes_are_logged_with_group(
    client: tuple[TestClient, Callable[[str], None]],
    caplog: pytest.LogCaptureFixture,
) -> None:
    test_client, _ = client
    caplog.set_level(logging.INFO)

    contact = test_client.post(
        "/api/crm/contacts",
        json={"first_name": "Log", "last_name": "Person", "emails": ["one@example.com", "two@example.com"]},
        headers={"X-Correlation-Id": "corr-flag-1"},
    )
    assert contact.status_code == 201
    contact_id = contact.json()["id"]
    emails = test_client.get(f"/api/crm/contacts/{contact_id}/emails").json()
    second = [item for item in emails if item["email_address"] == "two@example.com"][0]

    switched = test_client.patch(
        f"/api/crm/contacts/{contact_id}/emails/{second['id']}/primary",
        headers={"X-Correlation-Id": "corr-flag-2"},
    )
    assert switched.status_code == 200

    flag_records = [
        record
        for record in caplog.records
        if record.name == "crmdesk.crm.primary" and record.getMessage() == "primary_flag.set"
    ]
    assert flag_records
    assert any(
        getattr(record, "entity", None) == "contact_email"
        and getattr(record, "group_key", None) == contact_id
        and getattr(record, "record_id", None) == second["id"]
        and getattr(record, "correlation_id", None) == "corr-flag-2"
        for record in flag_records
    )
