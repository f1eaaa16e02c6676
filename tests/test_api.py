"""API tests for integration, sync and webhook routes."""

import asyncio
import json

import pytest

from conftest import make_item
from tributary.integrations.adapters.base import sign_hmac_sha256
from tributary.models.enums import IntegrationProvider

USER = {"X-User-Id": "user_1"}


@pytest.mark.asyncio
async def test_user_header_required(client):
    resp = await client.get("/api/v1/integrations")
    assert resp.status_code == 401
    body = resp.json()
    assert body["schema_version"] == "1.0"
    assert body["error"]["code"] == "AUTHENTICATION_ERROR"
    assert body["error"]["trace_id"] == resp.headers["X-Trace-Id"]


@pytest.mark.asyncio
async def test_trace_id_is_propagated(client):
    resp = await client.get("/api/v1/health", headers={"X-Trace-Id": "trc_fromclient01"})
    assert resp.headers["X-Trace-Id"] == "trc_fromclient01"


@pytest.mark.asyncio
async def test_definitions(client):
    resp = await client.get("/api/v1/integrations/definitions")
    assert resp.status_code == 200
    ids = [d["id"] for d in resp.json()]
    assert "granola" in ids
    assert "slack" in ids

    resp = await client.get("/api/v1/integrations/definitions", params={"include_unavailable": "false"})
    assert sorted(d["id"] for d in resp.json()) == ["granola", "notion"]


@pytest.mark.asyncio
async def test_connect_api_key_and_list(client):
    resp = await client.post(
        "/api/v1/integrations/granola/connect",
        json={"api_key": "good-key", "metadata": {"workspace": "team"}},
        headers=USER,
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["connected"] is True
    assert data["account_name"] == "Ada"
    assert data["metadata"] == {"workspace": "team"}

    resp = await client.get("/api/v1/integrations", headers=USER)
    assert [c["provider"] for c in resp.json()] == ["granola"]


@pytest.mark.asyncio
async def test_connect_invalid_key(client):
    resp = await client.post("/api/v1/integrations/granola/connect", json={"api_key": "bad"}, headers=USER)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_unknown_provider_is_404(client):
    resp = await client.post("/api/v1/integrations/myspace/sync", headers=USER)
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_sync_not_connected(client):
    resp = await client.post("/api/v1/integrations/notion/sync", headers=USER)
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_CONNECTED"


@pytest.mark.asyncio
async def test_sync_and_status(client, connect, fake_adapter):
    await connect()
    fake_adapter.items = [make_item("a", minutes=1), make_item("b", minutes=2)]
    fake_adapter.next_cursor = "c1"

    resp = await client.post("/api/v1/integrations/notion/sync", headers=USER)
    assert resp.status_code == 200
    result = resp.json()
    assert result["success"] is True
    assert result["items_created"] == 2
    assert result["cursor"] == "c1"

    resp = await client.get("/api/v1/integrations/notion/sync", headers=USER)
    status = resp.json()
    assert status["status"] == "completed"
    assert status["cursor"] == "c1"
    assert status["total_items_synced"] == 2


@pytest.mark.asyncio
async def test_sync_accepts_options(client, connect, fake_adapter):
    await connect()
    resp = await client.post(
        "/api/v1/integrations/notion/sync",
        json={"full_sync": True, "limit": 5},
        headers=USER,
    )
    assert resp.status_code == 200
    _, options = fake_adapter.calls[0]
    assert options.full_sync is True
    assert options.limit == 5

    resp = await client.post("/api/v1/integrations/notion/sync", json={"limit": 0}, headers=USER)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_concurrent_sync_returns_409(client, connect, fake_adapter):
    await connect()
    fake_adapter.gate = asyncio.Event()

    first = asyncio.create_task(client.post("/api/v1/integrations/notion/sync", headers=USER))
    await asyncio.wait_for(fake_adapter.started.wait(), timeout=5)

    resp = await client.post("/api/v1/integrations/notion/sync", headers=USER)
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "SYNC_IN_PROGRESS"

    fake_adapter.gate.set()
    assert (await first).status_code == 200


@pytest.mark.asyncio
async def test_pause_resume_and_disconnect(client, connect):
    await connect()
    resp = await client.post("/api/v1/integrations/notion/pause", headers=USER)
    assert resp.json() == {"provider": "notion", "paused": True}

    resp = await client.post("/api/v1/integrations/notion/sync", headers=USER)
    assert resp.status_code == 409

    await client.post("/api/v1/integrations/notion/resume", headers=USER)
    resp = await client.get("/api/v1/integrations/notion/sync", headers=USER)
    assert resp.json()["status"] == "pending"

    resp = await client.delete("/api/v1/integrations/notion", headers=USER)
    assert resp.json() == {"disconnected": True, "provider": "notion"}
    resp = await client.get("/api/v1/integrations", headers=USER)
    assert resp.json() == []


@pytest.mark.asyncio
async def test_update_metadata(client, connect):
    await connect()
    resp = await client.patch(
        "/api/v1/integrations/notion",
        json={"metadata": {"selected_repositories": ["acme/app"]}},
        headers=USER,
    )
    assert resp.status_code == 200
    assert resp.json()["metadata"] == {"selected_repositories": ["acme/app"]}


@pytest.mark.asyncio
async def test_sync_all(client, connect, fake_adapter):
    await connect()
    await connect(provider=IntegrationProvider.GRANOLA)
    resp = await client.post("/api/v1/integrations/sync-all", headers=USER)
    assert resp.status_code == 200
    results = {r["provider"]: r for r in resp.json()}
    assert results["notion"]["success"] is True
    assert results["granola"]["success"] is False


@pytest.mark.asyncio
async def test_webhook_round_trip(client, connect):
    await connect()
    resp = await client.post("/api/v1/integrations/notion/webhooks", headers=USER)
    assert resp.status_code == 201
    subscription = resp.json()
    assert "secret" not in subscription
    assert subscription["webhook_url"].endswith(f"/api/v1/webhooks/notion/{subscription['subscription_id']}")


@pytest.mark.asyncio
async def test_webhook_endpoint(client, connect, connections):
    await connect()
    subscription = await connections.register_webhook("user_1", "notion")
    body = json.dumps({"type": "page.updated", "items": [{"id": "p1"}]}).encode()
    path = f"/api/v1/webhooks/notion/{subscription.subscription_id}"

    resp = await client.post(path, content=body, headers={"X-Fake-Signature": "bad"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "INVALID_SIGNATURE"

    resp = await client.post(
        path,
        content=body,
        headers={"X-Fake-Signature": sign_hmac_sha256(body, subscription.secret), "Content-Type": "application/json"},
    )
    assert resp.status_code == 200
    assert resp.json()["items_created"] == 1
