from __future__ import annotations

from collections.abc import Callable

from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from crmdesk import audit, events
from crmdesk.crm.models import AreaOfActivity, ContactEmail, Deal, Synergy


def test_company_crud_and_filters(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    created = test_client.post(
        "/api/crm/companies",
        json={"name": "  Acme  ", "email": "Info@Acme.example.com", "industry": "Tools"},
    )
    assert created.status_code == 201
    company = created.json()
    assert company["name"] == "Acme"
    assert company["email"] == "info@acme.example.com"
    test_client.post("/api/crm/companies", json={"name": "Globex", "status": "inactive"})

    assert [row["name"] for row in test_client.get("/api/crm/companies").json()] == ["Acme", "Globex"]
    assert [row["name"] for row in test_client.get("/api/crm/companies", params={"q": "glob"}).json()] == ["Globex"]
    assert [row["name"] for row in test_client.get("/api/crm/companies", params={"status": "active"}).json()] == ["Acme"]

    updated = test_client.patch(f"/api/crm/companies/{company['id']}", json={"website": "https://acme.example.com"})
    assert updated.status_code == 200
    assert updated.json()["website"] == "https://acme.example.com"
    assert audit.audit_entries[-1]["before"]["website"] is None
    assert events.published_events[-1]["payload"]["changed_fields"] == ["website"]

    deleted = test_client.delete(f"/api/crm/companies/{company['id']}")
    assert deleted.status_code == 200
    missing = test_client.get(f"/api/crm/companies/{company['id']}")
    assert missing.status_code == 404
    assert missing.json()["code"] == "crm_company_get_failed"


def test_company_with_deal_cannot_be_deleted(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    company = test_client.post("/api/crm/companies", json={"name": "Deal Corp"}).json()
    test_client.post("/api/crm/deals", json={"name": "Big deal", "company_id": company["id"]})

    response = test_client.delete(f"/api/crm/companies/{company['id']}")

    assert response.status_code == 409
    assert response.json()["details"]["dependencies"]["deals"] == 1


def test_contact_crud_and_filters(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    company = test_client.post("/api/crm/companies", json={"name": "Bell Labs"}).json()
    claude = test_client.post(
        "/api/crm/contacts",
        json={"first_name": "Claude", "last_name": "Shannon", "emails": ["claude@bell.example.com"]},
    ).json()
    test_client.post("/api/crm/contacts", json={"first_name": "John", "last_name": "Bardeen"})
    test_client.post(
        f"/api/crm/contacts/{claude['id']}/areas-of-activity",
        json={"company_id": company["id"]},
    )

    names = [row["last_name"] for row in test_client.get("/api/crm/contacts").json()]
    assert names == ["Bardeen", "Shannon"]
    by_company = test_client.get("/api/crm/contacts", params={"company_id": company["id"]}).json()
    assert [row["id"] for row in by_company] == [claude["id"]]
    assert [row["id"] for row in test_client.get("/api/crm/contacts", params={"q": "shan"}).json()] == [claude["id"]]

    updated = test_client.patch(f"/api/crm/contacts/{claude['id']}", json={"mobile_phone": "+1 555 0100"})
    assert updated.status_code == 200
    assert updated.json()["mobile_phone"] == "+1 555 0100"
    assert updated.json()["primary_email"] == "claude@bell.example.com"

    blank = test_client.patch(f"/api/crm/contacts/{claude['id']}", json={"first_name": "   "})
    assert blank.status_code == 422


def test_delete_contact_removes_children_and_detaches_deals(
    client: tuple[TestClient, Callable[[str], None]],
    db_session: Session,
) -> None:
    test_client, _set_actor = client
    company = test_client.post("/api/crm/companies", json={"name": "Xerox"}).json()
    contact = test_client.post(
        "/api/crm/contacts",
        json={"first_name": "Alan", "last_name": "Kay", "emails": ["alan@parc.example.com", "kay@home.example.com"]},
    ).json()
    test_client.post(f"/api/crm/contacts/{contact['id']}/areas-of-activity", json={"company_id": company["id"]})
    deal = test_client.post("/api/crm/deals", json={"name": "Alto", "contact_id": contact["id"]}).json()
    test_client.post(
        "/api/crm/synergies",
        json={"contact_id": contact["id"], "company_id": company["id"], "type": "partner", "start_date": "2026-01-01"},
    )

    response = test_client.delete(f"/api/crm/contacts/{contact['id']}")

    assert response.status_code == 200
    assert test_client.get(f"/api/crm/contacts/{contact['id']}").status_code == 404
    db_session.expire_all()
    assert db_session.scalars(select(ContactEmail).where(ContactEmail.contact_id == contact["id"])).all() == []
    assert db_session.scalars(select(AreaOfActivity).where(AreaOfActivity.contact_id == contact["id"])).all() == []
    assert db_session.scalars(select(Synergy).where(Synergy.contact_id == contact["id"])).all() == []
    assert db_session.get(Deal, deal["id"]).contact_id is None
    assert events.published_events[-1]["event_type"] == "crm.contact.deleted"


def test_contact_validation_errors(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    assert test_client.post("/api/crm/contacts", json={"first_name": "", "last_name": "X"}).status_code == 422
    assert (
        test_client.post("/api/crm/contacts", json={"first_name": "A", "last_name": "B", "emails": ["nope"]}).status_code
        == 422
    )
    assert test_client.get("/api/crm/contacts/4242").status_code == 404
