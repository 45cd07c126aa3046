from __future__ import annotations

from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from crmdesk import audit, events
from crmdesk.crm.service import contact_email_service


def _create_contact(test_client: TestClient, emails: list[str] | None = None) -> dict:
    response = test_client.post(
        "/api/crm/contacts",
        json={"first_name": "Grace", "last_name": "Hopper", "emails": emails or []},
    )
    assert response.status_code == 201
    return response.json()


def _emails(test_client: TestClient, contact_id: int) -> list[dict]:
    response = test_client.get(f"/api/crm/contacts/{contact_id}/emails")
    assert response.status_code == 200
    return response.json()


def _primary_ids(rows: list[dict]) -> list[int]:
    return [row["id"] for row in rows if row["is_primary"]]


def test_contact_created_with_emails_has_first_as_primary(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    contact = _create_contact(test_client, ["Grace@Navy.example.com", "grace@home.example.com"])

    assert contact["primary_email"] == "grace@navy.example.com"
    rows = _emails(test_client, contact["id"])
    assert [row["email_address"] for row in rows] == ["grace@navy.example.com", "grace@home.example.com"]
    assert _primary_ids(rows) == [rows[0]["id"]]


def test_create_email_with_primary_demotes_previous(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    contact = _create_contact(test_client, ["a@example.com"])
    audit.audit_entries.clear()
    events.published_events.clear()

    response = test_client.post(
        f"/api/crm/contacts/{contact['id']}/emails",
        json={"email_address": "b@example.com", "type": "personal", "is_primary": True},
    )

    assert response.status_code == 201
    created = response.json()
    assert created["is_primary"] is True
    assert created["type"] == "personal"
    rows = _emails(test_client, contact["id"])
    assert _primary_ids(rows) == [created["id"]]
    assert rows[0]["id"] == created["id"]

    assert audit.audit_entries[-1]["entity_type"] == "crm.contact_email"
    assert audit.audit_entries[-1]["action"] == "create"
    assert audit.audit_entries[-1]["correlation_id"] == "corr-test"
    assert events.published_events[-1]["event_type"] == "crm.contact_email.created"
    assert events.published_events[-1]["payload"] == {
        "id": created["id"],
        "contact_id": contact["id"],
        "is_primary": True,
    }

    detail = test_client.get(f"/api/crm/contacts/{contact['id']}")
    assert detail.json()["primary_email"] == "b@example.com"


def test_set_primary_endpoint_is_idempotent(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    contact = _create_contact(test_client, ["a@example.com", "b@example.com"])
    second_id = _emails(test_client, contact["id"])[1]["id"]

    first_call = test_client.patch(f"/api/crm/contacts/{contact['id']}/emails/{second_id}/primary")
    assert first_call.status_code == 200
    assert first_call.json()["is_primary"] is True

    audit_count = len(audit.entries_for("crm.contact_email", second_id))
    event_count = len(events.published_events)

    second_call = test_client.patch(f"/api/crm/contacts/{contact['id']}/emails/{second_id}/primary")
    assert second_call.status_code == 200
    assert second_call.json()["updated_at"] == first_call.json()["updated_at"]
    assert _primary_ids(_emails(test_client, contact["id"])) == [second_id]
    assert events.published_events[-1]["event_type"] == "crm.contact_email.primary_set"
    assert len(events.published_events) == event_count
    assert len(audit.entries_for("crm.contact_email", second_id)) == audit_count


def test_set_primary_for_email_of_other_contact_returns_404(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    first = _create_contact(test_client, ["a@example.com"])
    second = _create_contact(test_client, ["b@example.com"])
    foreign_id = _emails(test_client, second["id"])[0]["id"]

    response = test_client.patch(f"/api/crm/contacts/{first['id']}/emails/{foreign_id}/primary")

    assert response.status_code == 404
    assert response.json()["code"] == "crm_contact_email_set_primary_failed"
    assert _primary_ids(_emails(test_client, second["id"])) == [foreign_id]


def test_delete_primary_email_promotes_oldest_remaining(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    contact = _create_contact(test_client, ["a@example.com", "b@example.com", "c@example.com"])
    rows = _emails(test_client, contact["id"])

    response = test_client.delete(f"/api/crm/contacts/{contact['id']}/emails/{rows[0]['id']}")

    assert response.status_code == 200
    assert response.json() == {"status": "deleted"}
    remaining = _emails(test_client, contact["id"])
    assert [row["id"] for row in remaining] == [rows[1]["id"], rows[2]["id"]]
    assert _primary_ids(remaining) == [rows[1]["id"]]
    assert events.published_events[-1]["event_type"] == "crm.contact_email.deleted"


def test_patch_email_flag_and_fields(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    contact = _create_contact(test_client, ["a@example.com", "b@example.com"])
    rows = _emails(test_client, contact["id"])

    promoted = test_client.patch(
        f"/api/crm/contacts/{contact['id']}/emails/{rows[1]['id']}",
        json={"is_primary": True, "email_address": "B.New@Example.com"},
    )
    assert promoted.status_code == 200
    assert promoted.json()["email_address"] == "b.new@example.com"
    assert _primary_ids(_emails(test_client, contact["id"])) == [rows[1]["id"]]

    cleared = test_client.patch(
        f"/api/crm/contacts/{contact['id']}/emails/{rows[1]['id']}",
        json={"is_primary": False},
    )
    assert cleared.status_code == 200
    assert _primary_ids(_emails(test_client, contact["id"])) == []


def test_patch_email_cannot_change_contact(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    first = _create_contact(test_client, ["a@example.com"])
    second = _create_contact(test_client, ["b@example.com"])
    email_id = _emails(test_client, first["id"])[0]["id"]

    response = test_client.patch(
        f"/api/crm/contacts/{first['id']}/emails/{email_id}",
        json={"contact_id": second["id"]},
    )

    assert response.status_code == 422
    assert "contact_id cannot be changed" in response.json()["message"]


def test_duplicate_address_for_same_contact_conflicts(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    contact = _create_contact(test_client, ["a@example.com"])

    response = test_client.post(
        f"/api/crm/contacts/{contact['id']}/emails",
        json={"email_address": "A@example.com"},
    )

    assert response.status_code == 409
    assert len(_emails(test_client, contact["id"])) == 1


def test_duplicate_addresses_on_contact_create_are_rejected(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    response = test_client.post(
        "/api/crm/contacts",
        json={"first_name": "Dup", "last_name": "Mail", "emails": ["x@example.com", "X@example.com"]},
    )
    assert response.status_code == 422


def test_email_endpoints_for_missing_contact_return_404(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    assert test_client.get("/api/crm/contacts/999/emails").status_code == 404
    response = test_client.post("/api/crm/contacts/999/emails", json={"email_address": "a@example.com"})
    assert response.status_code == 404
    assert response.json()["message"] == "contact not found"


def test_email_endpoints_require_permissions(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    contact = _create_contact(test_client, ["a@example.com"])

    set_actor("reader")
    assert test_client.get(f"/api/crm/contacts/{contact['id']}/emails").status_code == 200
    forbidden = test_client.post(
        f"/api/crm/contacts/{contact['id']}/emails",
        json={"email_address": "b@example.com"},
    )
    assert forbidden.status_code == 403
    assert forbidden.json()["message"] == "Missing permission: crm.contacts.write"

    set_actor("anonymous")
    assert test_client.get(f"/api/crm/contacts/{contact['id']}/emails").status_code == 401


def test_lost_demotion_is_reported_as_conflict(
    client: tuple[TestClient, Callable[[str], None]],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    test_client, _set_actor = client
    contact = _create_contact(test_client, ["a@example.com"])
    original_primary = _emails(test_client, contact["id"])[0]["id"]
    before = REGISTRY.get_sample_value("crm_primary_flag_conflicts_total", {"entity": "contact_email"}) or 0.0

    # another writer flagged a row between our demote and our insert
    monkeypatch.setattr(contact_email_service.toggler, "_demote_group", lambda *args, **kwargs: None)
    response = test_client.post(
        f"/api/crm/contacts/{contact['id']}/emails",
        json={"email_address": "b@example.com", "is_primary": True},
    )

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "crm_contact_email_create_failed"
    assert body["message"] == f"concurrent primary update detected for contact_email group {contact['id']}"
    assert REGISTRY.get_sample_value("crm_primary_flag_conflicts_total", {"entity": "contact_email"}) == before + 1

    monkeypatch.undo()
    emails = _emails(test_client, contact["id"])
    assert [item["id"] for item in emails] == [original_primary]
    assert not [item for item in events.published_events if item["event_type"] == "crm.contact_email.created"]
