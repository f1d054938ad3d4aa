import uuid

import aiohttp
import pytest

from tests.service import service


async def create_campaign(client: aiohttp.ClientSession, name: str = "Lost Mine") -> dict:
    resp = await client.post("/api/campaigns", json={"name": name})
    assert resp.status == 201
    body = await resp.json()
    assert body["success"] is True
    return body["data"]


@pytest.mark.asyncio
async def test_liveness(service):
    async with aiohttp.ClientSession(base_url=service.url) as client:
        resp = await client.get("/api/liveness")
        assert resp.status == 200
        assert await resp.json() == {"success": True}


@pytest.mark.asyncio
async def test_campaign_lifecycle(service):
    async with aiohttp.ClientSession(base_url=service.url) as client:
        campaign = await create_campaign(client)

        resp = await client.patch(f"/api/campaigns/{campaign['id']}", json={"current_location": "Phandalin"})
        assert resp.status == 200
        assert (await resp.json())["data"]["current_location"] == "Phandalin"

        resp = await client.get(f"/api/game-state?campaign_id={campaign['id']}")
        assert resp.status == 200
        assert (await resp.json())["data"]["in_combat"] is False

        resp = await client.delete(f"/api/campaigns/{campaign['id']}")
        assert resp.status == 200
        resp = await client.get(f"/api/campaigns/{campaign['id']}")
        assert resp.status == 404
        body = await resp.json()
        assert body == {"success": False, "error": "Campaign not found", "code": "CampaignNotFound"}


@pytest.mark.asyncio
async def test_validation_errors_are_400(service):
    async with aiohttp.ClientSession(base_url=service.url) as client:
        resp = await client.patch("/api/characters/not-a-uuid", json={"name": "Kael"})
        assert resp.status == 400
        body = await resp.json()
        assert body["success"] is False
        assert body["code"] == "Validation"
        assert body["details"]

        resp = await client.post("/api/campaigns", json={"name": ""})
        assert resp.status == 400

        campaign = await create_campaign(client)
        resp = await client.post("/api/chat", json={"campaign_id": campaign["id"]})
        assert resp.status == 400


@pytest.mark.asyncio
async def test_missing_resources_are_404(service):
    missing = str(uuid.uuid4())
    async with aiohttp.ClientSession(base_url=service.url) as client:
        resp = await client.delete(f"/api/characters/{missing}")
        assert resp.status == 404
        assert (await resp.json())["code"] == "CharacterNotFound"

        resp = await client.post("/api/chat", json={"campaign_id": missing, "message": "Hello"})
        assert resp.status == 404
        assert (await resp.json())["code"] == "CampaignNotFound"

        resp = await client.post("/api/play", json={"campaign_id": missing, "message": "Hello"})
        assert resp.status == 404


@pytest.mark.asyncio
async def test_character_actions(service):
    async with aiohttp.ClientSession(base_url=service.url) as client:
        campaign = await create_campaign(client)
        resp = await client.post(
            "/api/characters",
            json={"campaign_id": campaign["id"], "name": "Kael", "race": "Human", "character_class": "Fighter"},
        )
        assert resp.status == 201
        character = (await resp.json())["data"]

        resp = await client.patch(f"/api/characters/{character['id']}", json={})
        assert resp.status == 400
        assert (await resp.json())["code"] == "NoUpdateFields"

        resp = await client.post(
            f"/api/characters/{character['id']}", json={"action": "addItem", "name": "Rope"}
        )
        assert resp.status == 200
        inventory = (await resp.json())["data"]["inventory"]
        assert [i["name"] for i in inventory] == ["Rope"]

        resp = await client.post(f"/api/characters/{character['id']}", json={"action": "dance"})
        assert resp.status == 400
        assert (await resp.json())["code"] == "UnknownAction"

        resp = await client.get(f"/api/characters/{character['id']}?include=inventory")
        assert resp.status == 200
        assert len((await resp.json())["data"]["inventory"]) == 1


@pytest.mark.asyncio
async def test_settings_never_expose_keys(service):
    async with aiohttp.ClientSession(base_url=service.url) as client:
        resp = await client.get("/api/ai-settings")
        assert resp.status == 200
        data = (await resp.json())["data"]
        assert all(v in ("", "********") for v in data["api_keys"].values())

        resp = await client.post("/api/ai-settings/test", json={"provider": "nope"})
        assert resp.status == 400
        assert (await resp.json())["code"] == "InvalidProvider"


@pytest.mark.asyncio
async def test_session_start_and_end(service):
    async with aiohttp.ClientSession(base_url=service.url) as client:
        campaign = await create_campaign(client)

        resp = await client.post("/api/sessions", json={"action": "start", "campaign_id": campaign["id"]})
        assert resp.status == 200
        session = (await resp.json())["data"]
        assert session["session_number"] == 1

        resp = await client.post(
            "/api/sessions",
            json={"action": "end", "session_id": session["id"], "summary": "Quiet night", "highlights": ["Rested"]},
        )
        assert resp.status == 200
        assert (await resp.json())["data"]["summary"] == "Quiet night"

        resp = await client.get(f"/api/sessions?campaign_id={campaign['id']}")
        data = (await resp.json())["data"]
        assert data["current"] is None
        assert [s["id"] for s in data["logs"]] == [session["id"]]

        resp = await client.post("/api/sessions", json={"action": "end"})
        assert resp.status == 400
        resp = await client.post("/api/sessions", json={"action": "end", "session_id": str(uuid.uuid4())})
        assert resp.status == 404
        assert (await resp.json())["code"] == "SessionNotFound"
