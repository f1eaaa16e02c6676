"""Stripe adapter: account events from Stripe Connect.

Pulled events (``GET /v1/events``) and pushed webhook events normalize
through one function keyed on the event id, so both paths converge on the
same ingested row.
"""

from __future__ import annotations

import hmac
import logging
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from tributary.integrations.adapters.base import OAuth2Adapter, SyncContext, sign_hmac_sha256
from tributary.integrations.config import (
    AccountInfo,
    IntegrationDefinition,
    IntegrationFeatures,
    IntegrationTokens,
    OAuthClientConfig,
)
from tributary.integrations.normalized import (
    IngestItemMetadata,
    PaymentEventDetails,
    StandardIngestItem,
)
from tributary.models.enums import (
    AuthMethod,
    IngestItemType,
    IntegrationCategory,
    IntegrationProvider,
    SyncMethod,
)
from tributary.models.sync import SyncOptions

logger = logging.getLogger(__name__)

RELEVANT_EVENTS = frozenset({
    "customer.created",
    "customer.subscription.created",
    "customer.subscription.updated",
    "invoice.paid",
    "charge.succeeded",
})
SIGNATURE_TOLERANCE_SECONDS = 300


class StripeAdapter(OAuth2Adapter):
    definition = IntegrationDefinition(
        id=IntegrationProvider.STRIPE,
        name="Stripe",
        description="Track customers, subscriptions and payments from Stripe.",
        category=IntegrationCategory.PRODUCTIVITY,
        auth_method=AuthMethod.OAUTH2,
        scopes=["read_only"],
        sync_method=SyncMethod.WEBHOOK,
        supported_types=[IngestItemType.NOTE],
        default_sync_interval=60,
        features=IntegrationFeatures(realtime=True, incremental_sync=True, webhooks=True),
    )
    webhook_events = RELEVANT_EVENTS
    webhook_signature_header = "stripe-signature"

    @property
    def api_url(self) -> str:
        return self.settings.stripe_api_url.rstrip("/")

    def oauth_config(self) -> OAuthClientConfig:
        return OAuthClientConfig(
            client_id=self.settings.stripe_client_id,
            client_secret=self.settings.stripe_secret_key,
            authorization_url="https://connect.stripe.com/oauth/authorize",
            token_url="https://connect.stripe.com/oauth/token",
            redirect_uri=self.redirect_uri(),
            scopes=list(self.definition.scopes),
        )

    async def exchange_code_for_tokens(self, code: str) -> IntegrationTokens:
        async with self._client() as client:
            resp = await self._request(
                client,
                "POST",
                self.oauth_config().token_url,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "client_secret": self.settings.stripe_secret_key,
                },
            )
        data = resp.json()
        # Connect access tokens do not expire.
        return IntegrationTokens(access_token=data["access_token"], scope=data.get("scope"))

    @staticmethod
    def _headers(tokens: IntegrationTokens) -> dict[str, str]:
        return {"Authorization": f"Bearer {tokens.access_token}"}

    async def validate_connection(self, tokens: IntegrationTokens) -> bool:
        async with self._client() as client:
            resp = await client.get(f"{self.api_url}/v1/balance", headers=self._headers(tokens))
        return resp.status_code == 200

    async def get_account_info(self, tokens: IntegrationTokens) -> AccountInfo:
        async with self._client() as client:
            resp = await self._request(client, "GET", f"{self.api_url}/v1/account", headers=self._headers(tokens))
        account = resp.json()
        profile = account.get("business_profile") or {}
        return AccountInfo(
            account_id=account.get("id"),
            account_name=profile.get("name"),
            account_email=account.get("email"),
            workspace=account.get("business_type"),
            extra={"stripe_user_id": account.get("id"), "country": account.get("country")},
        )

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def sync(self, context: SyncContext, options: SyncOptions) -> list[StandardIngestItem]:
        """Page events newest first.

        A listing cut short by ``limit`` resumes from the oldest event
        returned, since ``created[gt]`` alone would skip every older event
        still pending in it.
        """
        limit = self.batch_limit(options)
        items: list[StandardIngestItem] = []
        starting_after = options.cursor
        has_more = True

        async with self._client() as client:
            while has_more and len(items) < limit:
                params: list[tuple[str, str]] = [("limit", str(min(100, limit - len(items))))]
                params.extend(("types[]", t) for t in sorted(RELEVANT_EVENTS))
                if options.since is not None:
                    params.append(("created[gt]", str(int(options.since.timestamp()))))
                if starting_after:
                    params.append(("starting_after", starting_after))

                resp = await self._request(
                    client,
                    "GET",
                    f"{self.api_url}/v1/events",
                    params=params,
                    headers=self._headers(context.tokens),
                )
                page = resp.json()
                events = page.get("data", [])
                items.extend(self._normalize_event(e) for e in events)
                has_more = bool(page.get("has_more")) and bool(events)
                if events:
                    starting_after = events[-1]["id"]

        context.next_cursor = starting_after if has_more else None

        logger.info("Pulled %d Stripe events for integration %s", len(items), context.integration_id)
        return items

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook_signature(self, body: bytes, headers: Mapping[str, str], secret: str) -> bool:
        """Check a ``Stripe-Signature: t=<ts>,v1=<hex>`` header with replay tolerance."""
        header = headers.get(self.webhook_signature_header, "")
        if not header or not secret:
            return False
        timestamp = None
        candidates: list[str] = []
        for part in header.split(","):
            key, _, value = part.strip().partition("=")
            if key == "t":
                timestamp = value
            elif key == "v1":
                candidates.append(value)
        if not timestamp or not candidates:
            return False
        try:
            if abs(time.time() - int(timestamp)) > SIGNATURE_TOLERANCE_SECONDS:
                return False
        except ValueError:
            return False

        expected = sign_hmac_sha256(f"{timestamp}.".encode("utf-8") + body, secret)
        return any(hmac.compare_digest(expected, c) for c in candidates)

    def webhook_event_type(self, headers: Mapping[str, str], payload: dict) -> str | None:
        return payload.get("type")

    def webhook_matches(self, metadata: dict[str, Any], payload: dict) -> bool:
        account = payload.get("account")
        connected = metadata.get("stripe_user_id")
        if not account or not connected:
            return True
        return account == connected

    async def handle_webhook(self, payload: dict, signature: str | None = None) -> list[StandardIngestItem]:
        if payload.get("type") not in RELEVANT_EVENTS:
            return []
        return [self._normalize_event(payload)]

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    @staticmethod
    def _normalize_event(event: dict) -> StandardIngestItem:
        event_type = event["type"]
        obj = (event.get("data") or {}).get("object") or {}
        amount = obj.get("amount_paid", obj.get("amount"))
        currency = obj.get("currency")

        content = f"Received Stripe event: {event_type}"
        if amount is not None and currency:
            content += f"\n\n**Amount:** {amount / 100:.2f} {currency.upper()}"
        if obj.get("id"):
            content += f"\n**Object:** {obj['id']}"

        return StandardIngestItem(
            source_provider=IntegrationProvider.STRIPE,
            source_id=event["id"],
            source_url=f"https://dashboard.stripe.com/events/{event['id']}",
            type=IngestItemType.NOTE,
            title=f"Stripe: {event_type}",
            content=content,
            raw_content=event,
            metadata=IngestItemMetadata(
                timestamp=datetime.fromtimestamp(int(event.get("created") or time.time()), tz=timezone.utc),
                tags=["stripe", event_type.split(".", 1)[0]],
                details=PaymentEventDetails(
                    event_type=event_type,
                    account_id=event.get("account"),
                    object_id=obj.get("id"),
                    amount=amount,
                    currency=currency,
                    livemode=bool(event.get("livemode")),
                ),
            ),
        )
