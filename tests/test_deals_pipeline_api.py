from __future__ import annotations

from collections.abc import Callable

from fastapi.testclient import TestClient


def _stage_ids(test_client: TestClient) -> dict[str, int]:
    return {stage["name"]: stage["id"] for stage in test_client.get("/api/crm/pipeline-stages").json()}


def test_initialize_default_stages_once(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    set_actor("admin")

    response = test_client.post("/api/crm/pipeline-stages/initialize")
    assert response.status_code == 200
    stages = response.json()
    assert [stage["name"] for stage in stages] == [
        "Lead",
        "Qualification",
        "Contact",
        "Analysis",
        "Proposal",
        "Negotiation",
        "Closed won",
        "Closed lost",
    ]
    assert [stage["position"] for stage in stages] == list(range(8))

    again = test_client.post("/api/crm/pipeline-stages/initialize")
    assert [stage["id"] for stage in again.json()] == [stage["id"] for stage in stages]


def test_pipeline_management_requires_manage_permission(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    response = test_client.post("/api/crm/pipeline-stages", json={"name": "Custom", "position": 1})
    assert response.status_code == 403
    assert test_client.get("/api/crm/pipeline-stages").status_code == 200


def test_stage_position_must_be_unique(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    set_actor("admin")
    assert test_client.post("/api/crm/pipeline-stages", json={"name": "One", "position": 1}).status_code == 201
    duplicate = test_client.post("/api/crm/pipeline-stages", json={"name": "Two", "position": 1})
    assert duplicate.status_code == 409


def test_moving_deal_through_closed_stages_updates_status(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    set_actor("admin")
    test_client.post("/api/crm/pipeline-stages/initialize")
    stages = _stage_ids(test_client)
    set_actor("alice")

    deal = test_client.post(
        "/api/crm/deals",
        json={"name": "Renewal", "value": "1200.50", "stage_id": stages["Proposal"]},
    ).json()
    assert deal["status"] == "open"

    won = test_client.patch(f"/api/crm/deals/{deal['id']}/stage", json={"stage_id": stages["Closed won"]})
    assert won.status_code == 200
    assert won.json()["status"] == "won"

    reopened = test_client.patch(f"/api/crm/deals/{deal['id']}/stage", json={"stage_id": stages["Negotiation"]})
    assert reopened.json()["status"] == "open"

    lost = test_client.patch(f"/api/crm/deals/{deal['id']}", json={"stage_id": stages["Closed lost"]})
    assert lost.json()["status"] == "lost"

    missing_stage = test_client.patch(f"/api/crm/deals/{deal['id']}/stage", json={"stage_id": 999})
    assert missing_stage.status_code == 404

    by_status = test_client.get("/api/crm/deals", params={"status": "lost"}).json()
    assert [row["id"] for row in by_status] == [deal["id"]]


def test_deal_references_are_validated(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _set_actor = client
    response = test_client.post("/api/crm/deals", json={"name": "Ghost", "company_id": 77})
    assert response.status_code == 422
    assert response.json()["message"] == "company not found"


def test_deleting_stage_detaches_deals(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    set_actor("admin")
    stage = test_client.post("/api/crm/pipeline-stages", json={"name": "Temp", "position": 3}).json()
    deal = test_client.post("/api/crm/deals", json={"name": "Parked", "stage_id": stage["id"]}).json()

    assert test_client.delete(f"/api/crm/pipeline-stages/{stage['id']}").status_code == 200
    assert test_client.get(f"/api/crm/deals/{deal['id']}").json()["stage_id"] is None

    assert test_client.delete(f"/api/crm/deals/{deal['id']}").status_code == 200
    assert test_client.get(f"/api/crm/deals/{deal['id']}").status_code == 404
