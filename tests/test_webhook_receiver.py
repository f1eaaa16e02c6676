"""Tests for inbound webhook verification and ingestion."""

import json

import httpx
import pytest

from conftest import make_item
from tributary.errors.exceptions import NotFoundError, ValidationError, WebhookSignatureError
from tributary.integrations.adapters.base import sign_hmac_sha256
from tributary.integrations.adapters.github import GitHubAdapter
from tributary.integrations.registry import ProviderRegistry
from tributary.models.enums import IntegrationProvider
from tributary.repositories.ingested_item_repo import IngestedItemRepository
from tributary.repositories.sync_state_repo import SyncStateRepository
from tributary.repositories.webhook_subscription_repo import WebhookSubscriptionRepository
from tributary.services.webhook_receiver import WebhookReceiver

GITHUB_ISSUE = {
    "action": "opened",
    "repository": {"full_name": "acme/app"},
    "issue": {
        "id": 1001,
        "number": 7,
        "title": "Importer drops tags",
        "body": "Tags are missing",
        "state": "open",
        "updated_at": "2026-03-01T08:00:00Z",
    },
}


@pytest.fixture
async def subscription(connect, connections):
    await connect()
    return await connections.register_webhook("user_1", "notion")


def _fake_delivery(secret: str, items: list[dict]) -> tuple[bytes, dict[str, str]]:
    body = json.dumps({"type": "page.updated", "items": items}).encode()
    return body, {"x-fake-signature": sign_hmac_sha256(body, secret)}


@pytest.fixture
def github_receiver(settings, session_factory):
    registry = ProviderRegistry()
    registry.register(GitHubAdapter(settings, transport=httpx.MockTransport(lambda request: httpx.Response(404))))
    return WebhookReceiver(registry.freeze(), session_factory, settings)


def _github_delivery(payload: dict, event: str = "issues") -> tuple[bytes, dict[str, str]]:
    body = json.dumps(payload).encode()
    return body, {
        "x-github-event": event,
        "x-hub-signature-256": "sha256=" + sign_hmac_sha256(body, "gh-hook-secret"),
    }


@pytest.mark.asyncio
async def test_subscription_delivery_ingests_items(receiver, subscription, session_factory):
    body, headers = _fake_delivery(subscription.secret, [{"id": "p1"}, {"id": "p2"}])
    result = await receiver.receive("notion", body, headers, subscription.subscription_id)

    assert result.processed
    assert result.event == "page.updated"
    assert result.integrations_matched == 1
    assert result.items_created == 2

    async with session_factory() as session:
        state = await SyncStateRepository(session).get_for_integration(subscription.integration_id)
        sub = await WebhookSubscriptionRepository(session).get(subscription.subscription_id)
    assert state.total_items_synced == 2
    assert state.cursor is None
    assert sub.received_count == 1
    assert sub.verified_at is not None


@pytest.mark.asyncio
async def test_bad_signature_changes_nothing(receiver, subscription, session_factory):
    body, _ = _fake_delivery(subscription.secret, [{"id": "p1"}])
    with pytest.raises(WebhookSignatureError):
        await receiver.receive("notion", body, {"x-fake-signature": "deadbeef"}, subscription.subscription_id)
    with pytest.raises(WebhookSignatureError):
        await receiver.receive("notion", body, {}, subscription.subscription_id)

    async with session_factory() as session:
        assert await IngestedItemRepository(session).count_by_integration(subscription.integration_id) == 0
        sub = await WebhookSubscriptionRepository(session).get(subscription.subscription_id)
    assert sub.received_count == 0


@pytest.mark.asyncio
async def test_unknown_subscription_or_provider(receiver, subscription):
    body, headers = _fake_delivery(subscription.secret, [])
    with pytest.raises(NotFoundError):
        await receiver.receive("notion", body, headers, "whs_missing")
    with pytest.raises(NotFoundError):
        await receiver.receive("granola", body, headers, subscription.subscription_id)
    with pytest.raises(NotFoundError):
        await receiver.receive("myspace", body, headers)


@pytest.mark.asyncio
async def test_malformed_body_rejected(receiver, subscription):
    body = b"not json"
    headers = {"x-fake-signature": sign_hmac_sha256(body, subscription.secret)}
    with pytest.raises(ValidationError):
        await receiver.receive("notion", body, headers, subscription.subscription_id)


@pytest.mark.asyncio
async def test_unreadable_item_is_recorded_on_subscription(receiver, subscription, session_factory):
    body, headers = _fake_delivery(subscription.secret, [{"id": "p1"}, {"title": "No id"}])
    with pytest.raises(ValidationError) as exc_info:
        await receiver.receive("notion", body, headers, subscription.subscription_id)
    assert exc_info.value.status_code == 400
    assert "KeyError" in exc_info.value.message

    async with session_factory() as session:
        sub = await WebhookSubscriptionRepository(session).get(subscription.subscription_id)
        assert await IngestedItemRepository(session).count_by_integration(subscription.integration_id) == 0
    assert sub.error_count == 1
    assert "KeyError" in sub.last_error
    assert sub.last_error_at is not None
    assert sub.received_count == 0


@pytest.mark.asyncio
async def test_unreadable_item_returns_400(client, subscription):
    body, headers = _fake_delivery(subscription.secret, [{"title": "No id"}])
    response = await client.post(
        f"/api/v1/webhooks/notion/{subscription.subscription_id}", content=body, headers=headers
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_pushed_then_pulled_item_is_one_row(receiver, orchestrator, fake_adapter, subscription, session_factory):
    body, headers = _fake_delivery(subscription.secret, [{"id": "p1", "content": "Body"}])
    await receiver.receive("notion", body, headers, subscription.subscription_id)

    fake_adapter.items = [make_item("p1", content="Body")]
    result = await orchestrator.sync_integration("user_1", "notion")
    assert result.items_skipped == 1
    assert result.items_created == 0

    async with session_factory() as session:
        assert await IngestedItemRepository(session).count_by_integration(subscription.integration_id) == 1


@pytest.mark.asyncio
async def test_changed_push_updates_row(receiver, subscription):
    body, headers = _fake_delivery(subscription.secret, [{"id": "p1", "content": "v1"}])
    await receiver.receive("notion", body, headers, subscription.subscription_id)
    body, headers = _fake_delivery(subscription.secret, [{"id": "p1", "content": "v2"}])
    result = await receiver.receive("notion", body, headers, subscription.subscription_id)
    assert result.items_updated == 1


@pytest.mark.asyncio
async def test_provider_level_delivery_routes_by_repository(github_receiver, connect, session_factory):
    selected = await connect(
        user_id="user_1", provider=IntegrationProvider.GITHUB, metadata={"selected_repositories": ["acme/app"]}
    )
    other = await connect(
        user_id="user_2", provider=IntegrationProvider.GITHUB, metadata={"selected_repositories": ["acme/other"]}
    )

    body, headers = _github_delivery(GITHUB_ISSUE)
    result = await github_receiver.receive("github", body, headers)
    assert result.integrations_matched == 1
    assert result.items_created == 1

    async with session_factory() as session:
        repo = IngestedItemRepository(session)
        assert await repo.get_by_source(selected.integration_id, "issue_1001") is not None
        assert await repo.count_by_integration(other.integration_id) == 0


@pytest.mark.asyncio
async def test_unsupported_event_is_acknowledged(github_receiver, connect):
    await connect(provider=IntegrationProvider.GITHUB)
    body, headers = _github_delivery({"zen": "Keep it simple"}, event="ping")
    result = await github_receiver.receive("github", body, headers)
    assert result.received
    assert not result.processed
    assert result.event == "ping"


@pytest.mark.asyncio
async def test_provider_level_secret_required(github_receiver):
    body = json.dumps(GITHUB_ISSUE).encode()
    headers = {
        "x-github-event": "issues",
        "x-hub-signature-256": "sha256=" + sign_hmac_sha256(body, "wrong-secret"),
    }
    with pytest.raises(WebhookSignatureError):
        await github_receiver.receive("github", body, headers)
