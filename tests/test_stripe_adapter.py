"""Tests for the Stripe Connect adapter."""

import json
import time

import httpx
import pytest

from tributary.integrations.adapters.base import SyncContext, sign_hmac_sha256
from tributary.integrations.adapters.stripe import StripeAdapter
from tributary.integrations.config import IntegrationTokens
from tributary.integrations.registry import ProviderRegistry
from tributary.models.enums import IntegrationProvider
from tributary.models.sync import SyncOptions
from tributary.repositories.ingested_item_repo import IngestedItemRepository
from tributary.services.sync_orchestrator import SyncOrchestrator

INVOICE_PAID = {
    "id": "evt_1",
    "type": "invoice.paid",
    "created": 1772359200,
    "account": "acct_123",
    "livemode": False,
    "data": {"object": {"id": "in_9", "amount_paid": 2500, "currency": "usd"}},
}


def _signed(body: bytes, secret: str = "whsec_test", at: int | None = None) -> dict[str, str]:
    at = int(time.time()) if at is None else at
    signature = sign_hmac_sha256(f"{at}.".encode() + body, secret)
    return {"stripe-signature": f"t={at},v1={signature}"}


@pytest.fixture
def stripe(settings):
    return StripeAdapter(settings, transport=httpx.MockTransport(lambda request: httpx.Response(404)))


def test_signature_verification(stripe):
    body = json.dumps(INVOICE_PAID).encode()
    assert stripe.verify_webhook_signature(body, _signed(body), "whsec_test")
    assert not stripe.verify_webhook_signature(body, _signed(body, secret="other"), "whsec_test")
    assert not stripe.verify_webhook_signature(body, {"stripe-signature": "v1=abc"}, "whsec_test")
    assert not stripe.verify_webhook_signature(body, {}, "whsec_test")


def test_signature_outside_tolerance_rejected(stripe):
    body = json.dumps(INVOICE_PAID).encode()
    stale = _signed(body, at=int(time.time()) - 3600)
    assert not stripe.verify_webhook_signature(body, stale, "whsec_test")


@pytest.mark.asyncio
async def test_webhook_event_normalization(stripe):
    items = await stripe.handle_webhook(INVOICE_PAID)
    assert len(items) == 1
    item = items[0]
    assert item.source_id == "evt_1"
    assert item.title == "Stripe: invoice.paid"
    assert "**Amount:** 25.00 USD" in item.content
    assert item.metadata.tags == ["stripe", "invoice"]
    assert item.metadata.details.account_id == "acct_123"

    assert await stripe.handle_webhook({**INVOICE_PAID, "type": "payout.created"}) == []
    assert not stripe.is_supported_event("payout.created")


def test_webhook_matches_connected_account(stripe):
    assert stripe.webhook_matches({"stripe_user_id": "acct_123"}, INVOICE_PAID)
    assert not stripe.webhook_matches({"stripe_user_id": "acct_999"}, INVOICE_PAID)
    assert stripe.webhook_matches({}, INVOICE_PAID)


@pytest.mark.asyncio
async def test_sync_pages_through_events(settings):
    seen = []
    second = {**INVOICE_PAID, "id": "evt_2"}

    def handler(request):
        seen.append(request)
        if request.url.params.get("starting_after") == "evt_1":
            return httpx.Response(200, json={"data": [second], "has_more": False})
        return httpx.Response(200, json={"data": [INVOICE_PAID], "has_more": True})

    adapter = StripeAdapter(settings, transport=httpx.MockTransport(handler))
    context = SyncContext(integration_id="int_1", user_id="user_1", tokens=IntegrationTokens(access_token="sk_acct"))
    items = await adapter.sync(context, SyncOptions())

    assert [i.source_id for i in items] == ["evt_1", "evt_2"]
    assert "invoice.paid" in seen[0].url.params.get_list("types[]")
    assert seen[0].headers["authorization"] == "Bearer sk_acct"


def _events_api(events: list[dict], seen: list[httpx.Request]):
    """Newest-first listing honoring ``created[gt]``, ``starting_after`` and ``limit``."""
    ordered = sorted(events, key=lambda e: e["created"], reverse=True)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        params = request.url.params
        listed = [e for e in ordered if e["created"] > int(params.get("created[gt]", 0))]
        if "starting_after" in params:
            ids = [e["id"] for e in listed]
            listed = listed[ids.index(params["starting_after"]) + 1:]
        limit = int(params["limit"])
        return httpx.Response(200, json={"data": listed[:limit], "has_more": len(listed) > limit})

    return handler


@pytest.mark.asyncio
async def test_limited_sync_reports_cursor_at_oldest_event(settings):
    events = [{**INVOICE_PAID, "id": f"evt_{n}", "created": INVOICE_PAID["created"] + n * 60} for n in (1, 2, 3)]
    adapter = StripeAdapter(settings, transport=httpx.MockTransport(_events_api(events, [])))
    context = SyncContext(integration_id="int_1", user_id="user_1", tokens=IntegrationTokens(access_token="sk_acct"))

    items = await adapter.sync(context, SyncOptions(limit=2))
    assert [i.source_id for i in items] == ["evt_3", "evt_2"]
    assert context.next_cursor == "evt_2"

    items = await adapter.sync(context, SyncOptions(limit=2, cursor=context.next_cursor))
    assert [i.source_id for i in items] == ["evt_1"]
    assert context.next_cursor is None


@pytest.mark.asyncio
async def test_limited_runs_store_every_event(settings, session_factory, connect):
    events = [{**INVOICE_PAID, "id": f"evt_{n}", "created": INVOICE_PAID["created"] + n * 60} for n in (1, 2, 3)]
    seen: list[httpx.Request] = []
    registry = ProviderRegistry()
    registry.register(StripeAdapter(settings, transport=httpx.MockTransport(_events_api(events, seen))))
    orchestrator = SyncOrchestrator(registry.freeze(), session_factory, settings)
    integration = await connect(provider=IntegrationProvider.STRIPE)

    for _ in range(4):
        assert (await orchestrator.sync_integration("user_1", "stripe", SyncOptions(limit=1))).success

    async with session_factory() as session:
        repo = IngestedItemRepository(session)
        stored = {row.source_id for row in await repo.list_by_integration(integration.integration_id)}
    assert stored == {"evt_1", "evt_2", "evt_3"}

    # The last run starts over from the newest event already stored.
    assert "starting_after" not in seen[-1].url.params
    assert seen[-1].url.params["created[gt]"] == str(INVOICE_PAID["created"] + 180)
