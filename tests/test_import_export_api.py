from __future__ import annotations

import csv
import io
from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient

from crmdesk import audit, events
from crmdesk.core.config import get_settings


def _upload(test_client: TestClient, entity: str, content: str, **params: object):  # type: ignore[no-untyped-def]
    return test_client.post(
        f"/api/crm/import/{entity}",
        params=params,
        files={"file": (f"{entity}.csv", content.encode("utf-8"), "text/csv")},
    )


def test_import_contacts_creates_primary_children_and_reports_errors(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    content = (
        "first_name,last_name,email,phone,company_name\n"
        "Ada,Lovelace,ada@engine.example.com;ada@home.example.org,+44 20 0000,Analytical Engines\n"
        "Bad,Row,not-an-email,,\n"
        ",Nameless,nameless@example.net,,\n"
        "Charles,Babbage,charles@difference.example.io,+44 20 1111,\n"
    )

    response = _upload(test_client, "contacts", content)

    assert response.status_code == 200
    result = response.json()
    assert result["entity"] == "contacts"
    assert result["total_rows"] == 4
    assert result["imported"] == 2
    assert result["failed"] == 2
    assert [error["row_number"] for error in result["errors"]] == [3, 4]

    contacts = test_client.get("/api/crm/contacts").json()
    ada = next(row for row in contacts if row["first_name"] == "Ada")
    assert ada["primary_email"] == "ada@engine.example.com"
    assert ada["primary_company_name"] == "Analytical Engines"
    emails = test_client.get(f"/api/crm/contacts/{ada['id']}/emails").json()
    assert [(row["email_address"], row["is_primary"]) for row in emails] == [
        ("ada@engine.example.com", True),
        ("ada@home.example.org", False),
    ]

    assert audit.audit_entries[-1]["action"] == "import"
    assert events.published_events[-1]["event_type"] == "crm.import.completed"
    assert events.published_events[-1]["payload"]["imported"] == 2


def test_import_skips_duplicates_of_existing_and_earlier_rows(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    test_client.post(
        "/api/crm/contacts",
        json={"first_name": "Grace", "last_name": "Hopper", "phone": "555-0100", "emails": ["grace@navy.example.com"]},
    )
    content = (
        "first_name,last_name,email,phone\n"
        "Grace,Hopper,grace@navy.example.com,5550100\n"
        "Edsger,Dijkstra,edsger@tue.example.nl,\n"
        "Edsger,Dijkstra,edsger@tue.example.nl,\n"
    )

    result = _upload(test_client, "contacts", content).json()

    assert result["imported"] == 1
    assert result["skipped_duplicates"] == 2
    assert len(test_client.get("/api/crm/contacts").json()) == 2

    forced = _upload(test_client, "contacts", "first_name,last_name,email\nGrace,Hopper,grace@navy.example.com\n", skip_duplicates="false").json()
    assert forced["imported"] == 1


def test_import_companies_and_leads(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    companies = _upload(
        test_client,
        "companies",
        "name,website,industry\nInitech,https://initech.example.com,Software\nUmbrella,https://umbrella.example.com,Pharma\n",
    ).json()
    assert companies["imported"] == 2

    leads = _upload(
        test_client,
        "leads",
        "first_name,last_name,email,status\nPeter,Gibbons,peter@initech.example.com,new\nMilton,Waddams,milton@initech.example.com,converted\n",
    ).json()
    assert leads["imported"] == 1
    assert leads["failed"] == 1
    assert "converted" in leads["errors"][0]["errors"][0]


def test_import_rejects_bad_files(
    client: tuple[TestClient, Callable[[str], None]],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    test_client, set_actor = client
    assert _upload(test_client, "deals", "name\nx\n").status_code == 422
    assert _upload(test_client, "contacts", "").status_code == 422

    binary = test_client.post(
        "/api/crm/import/contacts",
        files={"file": ("contacts.csv", b"\xff\xfe\x00bad", "text/csv")},
    )
    assert binary.status_code == 422

    monkeypatch.setenv("IMPORT_MAX_ROWS", "1")
    get_settings.cache_clear()
    too_many = _upload(test_client, "contacts", "first_name,last_name\nA,B\nC,D\n")
    assert too_many.status_code == 422
    assert "too many rows" in too_many.json()["message"]

    set_actor("reader")
    assert _upload(test_client, "contacts", "first_name,last_name\nA,B\n").status_code == 403


def test_export_contacts_as_csv(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    contact = test_client.post(
        "/api/crm/contacts",
        json={"first_name": "Barbara", "last_name": "Liskov", "phone": "555-0199", "emails": ["barbara@mit.example.edu"]},
    ).json()
    test_client.post(f"/api/crm/contacts/{contact['id']}/areas-of-activity", json={"company_name": "MIT"})

    response = test_client.get("/api/crm/export/contacts")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert 'filename="contacts.csv"' in response.headers["content-disposition"]
    rows = list(csv.DictReader(io.StringIO(response.text)))
    assert rows == [
        {
            "id": str(contact["id"]),
            "first_name": "Barbara",
            "last_name": "Liskov",
            "email": "barbara@mit.example.edu",
            "phone": "555-0199",
            "mobile_phone": "",
            "company_name": "MIT",
            "status": "active",
            "notes": "",
        }
    ]
    assert test_client.get("/api/crm/export/widgets").status_code == 422


def test_duplicate_report(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    first = test_client.post("/api/crm/companies", json={"name": "Acme Corp", "website": "https://acme.example.com"}).json()
    second = test_client.post("/api/crm/companies", json={"name": "Acme Corp.", "website": "https://acme.example.com"}).json()
    test_client.post("/api/crm/companies", json={"name": "Zeta Industries", "website": "https://zeta.example.org"})

    response = test_client.get("/api/crm/duplicates/companies")

    assert response.status_code == 200
    report = response.json()
    assert report["threshold"] == 0.8
    assert [(pair["first_id"], pair["second_id"]) for pair in report["pairs"]] == [(first["id"], second["id"])]
    assert report["pairs"][0]["matched_fields"]["website"] == 1.0

    strict = test_client.get("/api/crm/duplicates/companies", params={"threshold": 1.0}).json()
    assert strict["pairs"] == []


def test_duplicate_report_for_deals(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    acme = test_client.post("/api/crm/companies", json={"name": "Acme"}).json()
    globex = test_client.post("/api/crm/companies", json={"name": "Globex"}).json()
    first = test_client.post("/api/crm/deals", json={"name": "Acme renewal 2027", "company_id": acme["id"]}).json()
    second = test_client.post("/api/crm/deals", json={"name": "Acme renewal 2027", "company_id": acme["id"]}).json()
    test_client.post("/api/crm/deals", json={"name": "Website rebuild", "company_id": globex["id"]})

    response = test_client.get("/api/crm/duplicates/deals")

    assert response.status_code == 200
    pairs = response.json()["pairs"]
    assert [(pair["first_id"], pair["second_id"]) for pair in pairs] == [(first["id"], second["id"])]
    assert pairs[0]["matched_fields"] == {"name": 1.0, "company_id": 1.0}

    set_actor("reader")
    assert test_client.get("/api/crm/duplicates/deals").status_code == 403
