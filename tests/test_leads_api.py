from __future__ import annotations

from collections.abc import Callable

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from crmdesk import audit, events
from crmdesk.crm.models import AreaOfActivity, ContactEmail


def _create_lead(test_client: TestClient, **overrides: object) -> dict:
    payload = {
        "first_name": "Marie",
        "last_name": "Curie",
        "company_name": "Radium Institute",
        "email": "Marie@Radium.example.com",
        "phone": "+33 1 0000",
        "source": "conference",
    }
    payload.update(overrides)
    response = test_client.post("/api/crm/leads", json=payload)
    assert response.status_code == 201
    return response.json()


def test_lead_crud(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    lead = _create_lead(test_client)
    assert lead["status"] == "new"
    assert lead["email"] == "marie@radium.example.com"

    updated = test_client.patch(f"/api/crm/leads/{lead['id']}", json={"status": "qualified"})
    assert updated.status_code == 200
    assert updated.json()["status"] == "qualified"
    assert [row["id"] for row in test_client.get("/api/crm/leads", params={"status": "qualified"}).json()] == [lead["id"]]
    assert [row["id"] for row in test_client.get("/api/crm/leads", params={"q": "radium"}).json()] == [lead["id"]]

    assert test_client.delete(f"/api/crm/leads/{lead['id']}").status_code == 200
    assert test_client.get(f"/api/crm/leads/{lead['id']}").status_code == 404


def test_lead_cannot_be_marked_converted_directly(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    created = test_client.post("/api/crm/leads", json={"first_name": "A", "last_name": "B", "status": "converted"})
    assert created.status_code == 422

    lead = _create_lead(test_client)
    patched = test_client.patch(f"/api/crm/leads/{lead['id']}", json={"status": "converted"})
    assert patched.status_code == 422


def test_convert_lead_creates_contact_with_primary_children(
    client: tuple[TestClient, Callable[[str], None]],
    db_session: Session,
) -> None:
    test_client, _set_actor = client
    lead = _create_lead(test_client)
    audit.audit_entries.clear()
    events.published_events.clear()

    response = test_client.post(f"/api/crm/leads/{lead['id']}/convert")

    assert response.status_code == 200
    result = response.json()
    assert result["lead_id"] == lead["id"]
    assert result["company_id"] is not None

    contact = test_client.get(f"/api/crm/contacts/{result['contact_id']}").json()
    assert contact["first_name"] == "Marie"
    assert contact["primary_email"] == "marie@radium.example.com"
    assert contact["primary_company_id"] == result["company_id"]
    assert contact["primary_company_name"] == "Radium Institute"

    assert db_session.get(ContactEmail, result["contact_email_id"]).is_primary is True
    assert db_session.get(AreaOfActivity, result["area_of_activity_id"]).is_primary is True

    converted = test_client.get(f"/api/crm/leads/{lead['id']}").json()
    assert converted["status"] == "converted"
    assert converted["converted_contact_id"] == result["contact_id"]
    assert converted["converted_company_id"] == result["company_id"]
    assert converted["converted_at"] is not None

    assert audit.audit_entries[-1]["action"] == "convert"
    assert events.published_events[-1]["event_type"] == "crm.lead.converted"


def test_converting_twice_conflicts_and_converted_lead_is_read_only(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    lead = _create_lead(test_client)
    assert test_client.post(f"/api/crm/leads/{lead['id']}/convert").status_code == 200

    again = test_client.post(f"/api/crm/leads/{lead['id']}/convert")
    assert again.status_code == 409
    assert again.json()["code"] == "crm_lead_convert_failed"

    patched = test_client.patch(f"/api/crm/leads/{lead['id']}", json={"notes": "late edit"})
    assert patched.status_code == 422


def test_conversion_reuses_company_with_same_name(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    company = test_client.post("/api/crm/companies", json={"name": "Radium Institute"}).json()
    first = _create_lead(test_client, company_name="radium institute")
    second = _create_lead(test_client, first_name="Pierre", email="pierre@radium.example.com")

    first_result = test_client.post(f"/api/crm/leads/{first['id']}/convert").json()
    second_result = test_client.post(f"/api/crm/leads/{second['id']}/convert").json()

    assert first_result["company_id"] == company["id"]
    assert second_result["company_id"] == company["id"]
    assert len(test_client.get("/api/crm/companies").json()) == 1


def test_lead_without_company_or_email_converts_to_bare_contact(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    response = test_client.post("/api/crm/leads", json={"first_name": "Solo", "last_name": "Lead"})
    lead = response.json()

    result = test_client.post(f"/api/crm/leads/{lead['id']}/convert").json()

    assert result["company_id"] is None
    assert result["contact_email_id"] is None
    assert result["area_of_activity_id"] is None
    assert test_client.get(f"/api/crm/contacts/{result['contact_id']}").json()["primary_email"] is None
