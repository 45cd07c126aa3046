from __future__ import annotations

from collections.abc import Callable

from fastapi.testclient import TestClient


def _create_company(test_client: TestClient, name: str) -> dict:
    response = test_client.post("/api/crm/companies", json={"name": name})
    assert response.status_code == 201
    return response.json()


def _create_contact(test_client: TestClient) -> dict:
    response = test_client.post("/api/crm/contacts", json={"first_name": "Linus", "last_name": "Pauling"})
    assert response.status_code == 201
    return response.json()


def _areas(test_client: TestClient, contact_id: int) -> list[dict]:
    response = test_client.get(f"/api/crm/contacts/{contact_id}/areas-of-activity")
    assert response.status_code == 200
    return response.json()


def test_first_area_becomes_primary_and_fills_company_name(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    company = _create_company(test_client, "Caltech")
    contact = _create_contact(test_client)

    response = test_client.post(
        f"/api/crm/contacts/{contact['id']}/areas-of-activity",
        json={"company_id": company["id"], "role": "Professor"},
    )

    assert response.status_code == 201
    area = response.json()
    assert area["is_primary"] is True
    assert area["company_name"] == "Caltech"

    detail = test_client.get(f"/api/crm/contacts/{contact['id']}").json()
    assert detail["primary_company_id"] == company["id"]
    assert detail["primary_company_name"] == "Caltech"


def test_primary_area_switches_between_companies(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    first_company = _create_company(test_client, "Caltech")
    second_company = _create_company(test_client, "Oregon State")
    contact = _create_contact(test_client)
    base = f"/api/crm/contacts/{contact['id']}/areas-of-activity"

    first = test_client.post(base, json={"company_id": first_company["id"]}).json()
    second = test_client.post(base, json={"company_id": second_company["id"]}).json()
    assert second["is_primary"] is False

    response = test_client.patch(f"{base}/{second['id']}/primary")
    assert response.status_code == 200

    rows = _areas(test_client, contact["id"])
    assert [(row["id"], row["is_primary"]) for row in rows] == [(second["id"], True), (first["id"], False)]
    assert test_client.get(f"/api/crm/contacts/{contact['id']}").json()["primary_company_name"] == "Oregon State"


def test_area_with_unknown_company_is_rejected(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    contact = _create_contact(test_client)

    response = test_client.post(
        f"/api/crm/contacts/{contact['id']}/areas-of-activity",
        json={"company_id": 12345},
    )

    assert response.status_code == 422
    assert response.json()["message"] == "company not found"
    assert _areas(test_client, contact["id"]) == []


def test_free_text_area_without_company(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    contact = _create_contact(test_client)

    response = test_client.post(
        f"/api/crm/contacts/{contact['id']}/areas-of-activity",
        json={"company_name": "Freelance", "job_description": "Consulting"},
    )

    assert response.status_code == 201
    assert response.json()["company_id"] is None
    assert response.json()["company_name"] == "Freelance"


def test_delete_primary_area_promotes_next(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    contact = _create_contact(test_client)
    base = f"/api/crm/contacts/{contact['id']}/areas-of-activity"
    first = test_client.post(base, json={"company_name": "One"}).json()
    second = test_client.post(base, json={"company_name": "Two"}).json()

    response = test_client.delete(f"{base}/{first['id']}")

    assert response.status_code == 200
    rows = _areas(test_client, contact["id"])
    assert [(row["id"], row["is_primary"]) for row in rows] == [(second["id"], True)]
    assert test_client.get(f"{base}/{first['id']}").status_code == 404


def test_company_rename_propagates_to_areas(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    company = _create_company(test_client, "Old Name")
    contact = _create_contact(test_client)
    test_client.post(
        f"/api/crm/contacts/{contact['id']}/areas-of-activity",
        json={"company_id": company["id"]},
    )

    response = test_client.patch(f"/api/crm/companies/{company['id']}", json={"name": "New Name"})

    assert response.status_code == 200
    assert _areas(test_client, contact["id"])[0]["company_name"] == "New Name"


def test_company_with_areas_cannot_be_deleted(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    company = _create_company(test_client, "Busy Corp")
    contact = _create_contact(test_client)
    test_client.post(
        f"/api/crm/contacts/{contact['id']}/areas-of-activity",
        json={"company_id": company["id"]},
    )

    response = test_client.delete(f"/api/crm/companies/{company['id']}")

    assert response.status_code == 409
    assert response.json()["details"]["dependencies"]["areas_of_activity"] == 1
    assert test_client.get(f"/api/crm/companies/{company['id']}").status_code == 200
