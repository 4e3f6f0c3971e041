"""API integration tests for /queue endpoints."""

import pytest

ALICE = {"X-User-Id": "alice"}

LION = {
    "prompt": "A majestic lion walking through the savanna at sunset",
    "title": "Lion at sunset",
}


async def _submit(client) -> str:
    """Submit the lion video and return its queue entry id."""
    await client.post("/videos/", json=LION, headers=ALICE)
    queue = (await client.get("/queue/", headers=ALICE)).json()
    return queue["entries"][0]["entry_id"]


@pytest.mark.asyncio
async def test_empty_queue(client):
    response = await client.get("/queue/", headers=ALICE)

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "idle"
    assert data["entries"] == []
    assert data["stats"] == {"active": 0, "pending": 0, "completed": 0, "failed": 0}
    assert data["max_active"] == 1


@pytest.mark.asyncio
async def test_queue_shows_submitted_video(client):
    await _submit(client)

    data = (await client.get("/queue/", headers=ALICE)).json()

    assert data["status"] == "processing"
    assert len(data["entries"]) == 1
    entry = data["entries"][0]
    assert entry["title"] == "Lion at sunset"
    assert entry["position"] == 1
    assert entry["active"] is True
    assert entry["priority"] == "normal"


@pytest.mark.asyncio
async def test_position(client):
    entry_id = await _submit(client)

    response = await client.get(f"/queue/{entry_id}/position", headers=ALICE)

    assert response.status_code == 200
    assert response.json() == {"entry_id": entry_id, "position": 1, "estimated_wait": 120.0}


@pytest.mark.asyncio
async def test_unknown_entry(client):
    response = await client.get("/queue/missing/position", headers=ALICE)

    assert response.status_code == 404
    assert response.json()["code"] == "QUEUE_ENTRY_NOT_FOUND"


@pytest.mark.asyncio
async def test_pause_and_resume(client):
    paused = (await client.post("/queue/pause", headers=ALICE)).json()
    assert paused["status"] == "paused"

    await client.post("/videos/", json=LION, headers=ALICE)
    refreshed = (await client.post("/videos/current/refresh", headers=ALICE)).json()
    assert refreshed["status"] == "pending"

    resumed = (await client.post("/queue/resume", headers=ALICE)).json()
    assert resumed["status"] == "processing"
    assert resumed["entries"][0]["active"] is True


@pytest.mark.asyncio
async def test_update_priority(client):
    entry_id = await _submit(client)

    response = await client.put(f"/queue/{entry_id}/priority", json={"priority": "high"}, headers=ALICE)

    assert response.status_code == 200
    assert response.json()["priority"] == "high"


@pytest.mark.asyncio
async def test_invalid_priority(client):
    entry_id = await _submit(client)

    response = await client.put(f"/queue/{entry_id}/priority", json={"priority": "urgent"}, headers=ALICE)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_remove_entry_cancels_video(client):
    entry_id = await _submit(client)

    response = await client.delete(f"/queue/{entry_id}", headers=ALICE)

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert (await client.get("/queue/", headers=ALICE)).json()["entries"] == []

    current = (await client.get("/videos/current", headers=ALICE)).json()
    assert current["state"] == "cancelled"


@pytest.mark.asyncio
async def test_clear_queue(client, fake_redis):
    await _submit(client)

    response = await client.delete("/queue/", headers=ALICE)

    assert response.status_code == 200
    assert response.json()["entries"] == []
    assert await fake_redis.exists("videogen:queue:alice")


@pytest.mark.asyncio
async def test_empty_dead_letter(client):
    data = (await client.get("/queue/dead-letter")).json()
    assert data == {"count": 0, "entries": []}
