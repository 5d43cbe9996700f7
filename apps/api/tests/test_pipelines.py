"""Tests for pipelines, stages and opportunities."""
import pytest
from httpx import AsyncClient

from aris.services import pipeline_service


async def _default_pipeline(client: AsyncClient) -> dict:
    response = await client.get("/api/pipelines")
    assert response.status_code == 200
    return response.json()[0]


@pytest.mark.asyncio
async def test_default_pipeline_is_created_lazily(authed_client: AsyncClient):
    pipeline = await _default_pipeline(authed_client)
    assert pipeline["is_default"] is True
    assert pipeline["name"] == "Sales Pipeline"
    assert [s["name"] for s in pipeline["stages"]] == [s["name"] for s in pipeline_service.DEFAULT_STAGES]
    assert [s["order"] for s in pipeline["stages"]] == [1, 2, 3, 4, 5, 6]


@pytest.mark.asyncio
async def test_custom_pipeline_stages(authed_client: AsyncClient):
    response = await authed_client.post(
        "/api/pipelines",
        json={"name": "Partners", "stages": [{"name": "Intro", "probability": 20}, {"name": "Signed", "probability": 100}]},
    )
    assert response.status_code == 201
    assert [s["name"] for s in response.json()["stages"]] == ["Intro", "Signed"]


@pytest.mark.asyncio
async def test_stale_version_conflicts(authed_client: AsyncClient):
    pipeline = await _default_pipeline(authed_client)
    response = await authed_client.patch(
        f"/api/pipelines/{pipeline['id']}", json={"name": "Renamed", "expected_version": 1}
    )
    assert response.status_code == 200
    assert response.json()["current_version"] == 2

    response = await authed_client.patch(
        f"/api/pipelines/{pipeline['id']}", json={"name": "Again", "expected_version": 1}
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_default_pipeline_cannot_be_deleted(authed_client: AsyncClient):
    pipeline = await _default_pipeline(authed_client)
    response = await authed_client.delete(f"/api/pipelines/{pipeline['id']}")
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_add_stage_in_position_shifts_others(authed_client: AsyncClient):
    pipeline = await _default_pipeline(authed_client)
    response = await authed_client.post(
        f"/api/pipelines/{pipeline['id']}/stages",
        json={"name": "Demo", "probability": 40, "color": "#ABCDEF", "order": 3},
    )
    assert response.status_code == 201
    assert response.json()["order"] == 3
    assert response.json()["color"] == "#abcdef"

    pipeline = await _default_pipeline(authed_client)
    names = [s["name"] for s in sorted(pipeline["stages"], key=lambda s: s["order"])]
    assert names[2] == "Demo"
    assert names[3] == "Proposal"


@pytest.mark.asyncio
async def test_reorder_requires_every_stage(authed_client: AsyncClient):
    pipeline = await _default_pipeline(authed_client)
    stage_ids = [s["id"] for s in pipeline["stages"]]

    response = await authed_client.put(
        f"/api/pipelines/{pipeline['id']}/stages/reorder", json={"ordered_stage_ids": stage_ids[:2]}
    )
    assert response.status_code == 400

    response = await authed_client.put(
        f"/api/pipelines/{pipeline['id']}/stages/reorder",
        json={"ordered_stage_ids": list(reversed(stage_ids))},
    )
    assert response.status_code == 200
    assert response.json()[0]["id"] == stage_ids[-1]
    assert [s["order"] for s in response.json()] == [1, 2, 3, 4, 5, 6]


@pytest.mark.asyncio
async def test_opportunity_lands_in_first_stage(authed_client: AsyncClient):
    response = await authed_client.post("/api/opportunities", json={"title": "Big deal", "value": 1000, "currency": "usd"})
    assert response.status_code == 201
    opp = response.json()
    assert opp["probability"] == 10
    assert opp["status"] == "open"
    assert opp["currency"] == "USD"


@pytest.mark.asyncio
async def test_move_to_won_and_lost_closes(authed_client: AsyncClient):
    pipeline = await _default_pipeline(authed_client)
    stages = {s["name"]: s["id"] for s in pipeline["stages"]}
    opp = (await authed_client.post("/api/opportunities", json={"title": "Deal"})).json()

    response = await authed_client.post(f"/api/opportunities/{opp['id']}/move", json={"stage_id": stages["Won"]})
    assert response.status_code == 200
    assert response.json()["status"] == "won"
    assert response.json()["probability"] == 100
    assert response.json()["closed_at"] is not None

    response = await authed_client.post(f"/api/opportunities/{opp['id']}/move", json={"stage_id": stages["Lost"]})
    assert response.json()["status"] == "lost"

    response = await authed_client.post(f"/api/opportunities/{opp['id']}/move", json={"stage_id": stages["Proposal"]})
    assert response.json()["status"] == "open"
    assert response.json()["closed_at"] is None

    activities = (await authed_client.get(f"/api/opportunities/{opp['id']}/activities")).json()
    assert sum(1 for a in activities if a["activity_type"] == "stage_change") == 3


@pytest.mark.asyncio
async def test_move_to_foreign_stage_rejected(authed_client: AsyncClient):
    other = (await authed_client.post("/api/pipelines", json={"name": "Other"})).json()
    opp = (await authed_client.post("/api/opportunities", json={"title": "Deal"})).json()
    response = await authed_client.post(
        f"/api/opportunities/{opp['id']}/move", json={"stage_id": other["stages"][1]["id"]}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_stage_with_opportunities_cannot_be_deleted(authed_client: AsyncClient):
    pipeline = await _default_pipeline(authed_client)
    first = pipeline["stages"][0]["id"]
    await authed_client.post("/api/opportunities", json={"title": "Deal"})
    response = await authed_client.delete(f"/api/pipelines/{pipeline['id']}/stages/{first}")
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_summary_weights_open_value(authed_client: AsyncClient):
    pipeline = await _default_pipeline(authed_client)
    stages = {s["name"]: s["id"] for s in pipeline["stages"]}
    await authed_client.post("/api/opportunities", json={"title": "A", "value": 1000})
    await authed_client.post(
        "/api/opportunities", json={"title": "B", "value": 200, "stage_id": stages["Proposal"]}
    )
    await authed_client.post("/api/opportunities", json={"title": "C", "value": 500, "stage_id": stages["Won"]})

    summary = (await authed_client.get(f"/api/pipelines/{pipeline['id']}/summary")).json()
    assert summary["open_count"] == 2
    assert summary["total_value"] == 1200
    assert summary["weighted_value"] == 200
    won = next(s for s in summary["stages"] if s["name"] == "Won")
    assert won["count"] == 1
    assert won["value"] == 500


@pytest.mark.asyncio
async def test_status_update_records_activity(authed_client: AsyncClient):
    opp = (await authed_client.post("/api/opportunities", json={"title": "Deal"})).json()
    response = await authed_client.patch(f"/api/opportunities/{opp['id']}", json={"status": "lost"})
    assert response.json()["status"] == "lost"
    activities = (await authed_client.get(f"/api/opportunities/{opp['id']}/activities")).json()
    assert any(a["activity_type"] == "status_change" for a in activities)


@pytest.mark.asyncio
async def test_list_filters_by_status(authed_client: AsyncClient):
    await authed_client.post("/api/opportunities", json={"title": "Open one"})
    lost = (await authed_client.post("/api/opportunities", json={"title": "Lost one"})).json()
    await authed_client.patch(f"/api/opportunities/{lost['id']}", json={"status": "lost"})

    response = await authed_client.get("/api/opportunities", params={"status": "open"})
    assert response.json()["total"] == 1
    assert response.json()["items"][0]["title"] == "Open one"
