"""Tests for connecting, configuring and disconnecting integrations."""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from conftest import make_item
from tributary.db.base import utcnow
from tributary.errors.exceptions import (
    ConflictError,
    NotConnectedError,
    UnsupportedOperationError,
    ValidationError,
)
from tributary.integrations.adapters.readwise import ReadwiseAdapter
from tributary.integrations.registry import ProviderRegistry
from tributary.models.enums import SyncStatus
from tributary.repositories.ingested_item_repo import IngestedItemRepository
from tributary.repositories.integration_repo import IntegrationRepository
from tributary.repositories.sync_state_repo import SyncStateRepository
from tributary.repositories.webhook_subscription_repo import WebhookSubscriptionRepository
from tributary.services.connection_service import ConnectionService
from tributary.services.ingestion_pipeline import IngestionPipeline
from tributary.services.item_processor import ItemProcessor


def _readwise_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/token/"):
        form = parse_qs(request.content.decode())
        if form.get("code") != ["good-code"]:
            return httpx.Response(400, json={"error": "invalid_grant"})
        return httpx.Response(200, json={"access_token": "rw-access", "refresh_token": "rw-refresh", "expires_in": 3600})
    if request.url.path.endswith("/auth/"):
        return httpx.Response(200, json={"email": "reader@example.com"})
    return httpx.Response(404)


@pytest.fixture
def oauth_connections(settings, session_factory):
    registry = ProviderRegistry()
    registry.register(ReadwiseAdapter(settings, transport=httpx.MockTransport(_readwise_handler)))
    return ConnectionService(registry.freeze(), session_factory, settings)


@pytest.mark.asyncio
async def test_connect_api_key(connections, session_factory):
    row = await connections.connect_api_key("user_1", "granola", "good-key", {"workspace": "team"})
    assert row.account_name == "Ada"
    assert row.account_email == "ada@example.com"
    assert row.provider_metadata == {"workspace": "team"}

    async with session_factory() as session:
        state = await SyncStateRepository(session).get_for_integration(row.integration_id)
    assert state.status == SyncStatus.PENDING.value
    assert state.next_sync_at is not None


@pytest.mark.asyncio
async def test_connect_api_key_rejected(connections):
    with pytest.raises(ValidationError):
        await connections.connect_api_key("user_1", "granola", "bad-key")
    with pytest.raises(UnsupportedOperationError):
        await connections.connect_api_key("user_1", "notion", "good-key")


@pytest.mark.asyncio
async def test_reconnect_replaces_credentials(connections):
    first = await connections.connect_api_key("user_1", "granola", "good-key")
    second = await connections.connect_api_key("user_1", "granola", "good-key", {"extra": True})
    assert second.integration_id == first.integration_id
    assert second.provider_metadata == {"extra": True}


@pytest.mark.asyncio
async def test_oauth_flow(oauth_connections, session_factory):
    started = oauth_connections.authorization_url("user_1", "readwise")
    query = parse_qs(urlparse(started["authorization_url"]).query)
    assert query["state"] == [started["state"]]
    assert query["redirect_uri"] == ["http://test/api/v1/integrations/readwise/callback"]

    row = await oauth_connections.complete_oauth("readwise", "good-code", started["state"])
    assert row.user_id == "user_1"
    assert row.access_token == "rw-access"
    assert row.refresh_token == "rw-refresh"
    assert row.expires_at is not None
    assert row.account_email == "reader@example.com"


@pytest.mark.asyncio
async def test_oauth_callback_rejects_forged_state(oauth_connections):
    with pytest.raises(ValidationError):
        await oauth_connections.complete_oauth("readwise", "good-code", "forged.state")


def test_authorization_url_requires_oauth_provider(connections):
    with pytest.raises(UnsupportedOperationError):
        connections.authorization_url("user_1", "granola")


@pytest.mark.asyncio
async def test_update_metadata_merges(connections, connect):
    await connect(metadata={"a": 1})
    row = await connections.update_metadata("user_1", "notion", {"b": 2})
    assert row.provider_metadata == {"a": 1, "b": 2}

    with pytest.raises(NotConnectedError):
        await connections.update_metadata("user_2", "notion", {"b": 2})


@pytest.mark.asyncio
async def test_list_connections(connections, connect):
    await connect()
    listed = await connections.list_connections("user_1")
    assert len(listed) == 1
    assert listed[0]["provider"] == "notion"
    assert listed[0]["name"] == "Notion"
    assert listed[0]["sync"]["status"] == "pending"
    assert await connections.list_connections("user_2") == []


@pytest.mark.asyncio
async def test_pause_and_resume(connections, connect, session_factory):
    row = await connect()
    await connections.set_paused("user_1", "notion", True)
    async with session_factory() as session:
        state = await SyncStateRepository(session).get_for_integration(row.integration_id)
    assert state.status == SyncStatus.PAUSED.value

    await connections.set_paused("user_1", "notion", False)
    async with session_factory() as session:
        state = await SyncStateRepository(session).get_for_integration(row.integration_id)
    assert state.status == SyncStatus.PENDING.value


@pytest.mark.asyncio
async def test_pause_refused_while_syncing(connections, connect, session_factory):
    row = await connect()
    async with session_factory() as session:
        await SyncStateRepository(session).try_start(row.integration_id, utcnow(), utcnow())
        await session.commit()

    with pytest.raises(ConflictError):
        await connections.set_paused("user_1", "notion", True)


@pytest.mark.asyncio
async def test_register_webhook(connections, connect, fake_adapter):
    await connect()
    subscription = await connections.register_webhook("user_1", "notion")

    assert subscription.subscription_id.startswith("whs_")
    assert subscription.webhook_id == "hook_1"
    assert subscription.webhook_url == f"http://test/api/v1/webhooks/notion/{subscription.subscription_id}"
    assert len(subscription.secret) == 64
    assert fake_adapter.registered == [(subscription.webhook_url, subscription.secret)]


@pytest.mark.asyncio
async def test_register_webhook_replaces_existing(connections, connect, fake_adapter, session_factory):
    row = await connect()
    first = await connections.register_webhook("user_1", "notion")
    second = await connections.register_webhook("user_1", "notion")

    assert second.subscription_id != first.subscription_id
    assert fake_adapter.unregistered == ["hook_1"]
    async with session_factory() as session:
        current = await WebhookSubscriptionRepository(session).get_for_integration(row.integration_id, "notion")
        assert await WebhookSubscriptionRepository(session).get(first.subscription_id) is None
    assert current.subscription_id == second.subscription_id


@pytest.mark.asyncio
async def test_register_webhook_unsupported(connections):
    await connections.connect_api_key("user_1", "granola", "good-key")
    with pytest.raises(UnsupportedOperationError):
        await connections.register_webhook("user_1", "granola")


@pytest.mark.asyncio
async def test_disconnect_cascades(connections, connect, fake_adapter, session_factory):
    row = await connect()
    await connections.register_webhook("user_1", "notion")
    processor = ItemProcessor(session_factory, IngestionPipeline())
    await processor.process(row.integration_id, "user_1", make_item("x1"))

    await connections.disconnect("user_1", "notion")

    assert fake_adapter.unregistered == ["hook_1"]
    async with session_factory() as session:
        assert await IntegrationRepository(session).get(row.integration_id) is None
        assert await SyncStateRepository(session).get_for_integration(row.integration_id) is None
        assert await IngestedItemRepository(session).count_by_integration(row.integration_id) == 0
        assert await WebhookSubscriptionRepository(session).get_for_integration(row.integration_id, "notion") is None

    with pytest.raises(NotConnectedError):
        await connections.disconnect("user_1", "notion")
