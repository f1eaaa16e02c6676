"""Inbound webhook handling.

Verified deliveries are normalized by the provider adapter and fed through
the same per-item path as pull sync, so a record that arrives both pushed
and pulled ends up as one ingested row.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tributary.config import Settings
from tributary.db.base import utcnow
from tributary.db.models.integration import IntegrationRow
from tributary.errors.exceptions import (
    NotFoundError,
    UnsupportedOperationError,
    ValidationError,
    WebhookSignatureError,
)
from tributary.integrations.adapters.base import ProviderAdapter
from tributary.integrations.normalized import StandardIngestItem
from tributary.integrations.registry import ProviderRegistry
from tributary.models.enums import IntegrationProvider
from tributary.models.sync import WebhookResult
from tributary.repositories.integration_repo import IntegrationRepository
from tributary.repositories.sync_state_repo import SyncStateRepository
from tributary.repositories.webhook_subscription_repo import WebhookSubscriptionRepository
from tributary.services.ingestion_pipeline import IngestionPipeline
from tributary.services.item_processor import ItemProcessor, OutcomeCounts

logger = logging.getLogger(__name__)


class WebhookReceiver:
    def __init__(
        self,
        registry: ProviderRegistry,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        pipeline: IngestionPipeline | None = None,
    ):
        self.registry = registry
        self.session_factory = session_factory
        self.settings = settings
        self.processor = ItemProcessor(session_factory, pipeline or IngestionPipeline())

    async def receive(
        self,
        provider: str,
        body: bytes,
        headers: Mapping[str, str],
        subscription_id: str | None = None,
    ) -> WebhookResult:
        """Verify, normalize and ingest one delivery.

        Args:
            provider: Provider slug from the URL.
            body: Raw request body, exactly as signed by the provider.
            headers: Request headers with lowercase names.
            subscription_id: Set for per-integration endpoints; selects the
                subscription secret and the single target integration.

        Raises:
            NotFoundError: Unknown provider or subscription.
            WebhookSignatureError: Signature missing or invalid. Nothing is
                recorded for rejected deliveries.
            ValidationError: Body is not a JSON object, or the adapter could
                not normalize it. The latter is recorded on the subscription.
        """
        try:
            provider_id = IntegrationProvider.from_slug(provider)
        except ValueError:
            raise NotFoundError("Provider", provider)
        adapter = self.registry.require(provider_id)

        async with self.session_factory() as session:
            subscription = None
            if subscription_id is not None:
                subscription = await WebhookSubscriptionRepository(session).get(subscription_id)
                if subscription is None or subscription.provider != provider_id.value or not subscription.is_active:
                    raise NotFoundError("Webhook subscription", subscription_id)
                secret = subscription.secret or ""
            else:
                secret = self.settings.webhook_secret_for(provider_id.value)

            if not adapter.verify_webhook_signature(body, headers, secret):
                raise WebhookSignatureError(provider_id.value)

            payload = self._parse(body)
            event = adapter.webhook_event_type(headers, payload)
            if not adapter.is_supported_event(event):
                logger.info("Ignoring unsupported %s webhook event %s", provider_id.value, event)
                return WebhookResult(processed=False, event=event)

            targets = await self._targets(session, adapter, payload, subscription.integration_id if subscription else None)
            try:
                items = await adapter.handle_webhook(payload, headers.get(adapter.webhook_signature_header))
            except UnsupportedOperationError:
                return WebhookResult(processed=False, event=event)
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                message = f"Could not normalize {event or 'webhook'} payload: {exc.__class__.__name__}: {exc}"
                logger.warning("Rejected %s webhook delivery: %s", provider_id.value, message)
                await self._record_rejection(session, subscription, targets, message)
                raise ValidationError(message, details={"provider": provider_id.value, "event": event}) from exc

        result = WebhookResult(processed=True, event=event, integrations_matched=len(targets))
        totals = OutcomeCounts()
        for integration in targets:
            counts = await self._ingest(integration, items, result)
            totals.created += counts.created
            totals.updated += counts.updated
            totals.skipped += counts.skipped
            totals.failed += counts.failed
            totals.processed += counts.processed

        result.items_processed = totals.processed
        result.items_created = totals.created
        result.items_updated = totals.updated
        result.items_skipped = totals.skipped
        result.items_failed = totals.failed
        logger.info(
            "Webhook %s/%s: %d items for %d integrations (%d created, %d updated, %d failed)",
            provider_id.value,
            event,
            len(items),
            len(targets),
            totals.created,
            totals.updated,
            totals.failed,
        )
        return result

    @staticmethod
    def _parse(body: bytes) -> dict:
        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            raise ValidationError("Webhook body is not valid JSON") from None
        if not isinstance(payload, dict):
            raise ValidationError("Webhook body must be a JSON object")
        return payload

    @staticmethod
    async def _targets(
        session: AsyncSession,
        adapter: ProviderAdapter,
        payload: dict,
        integration_id: str | None,
    ) -> list[IntegrationRow]:
        repo = IntegrationRepository(session)
        if integration_id is not None:
            row = await repo.get(integration_id)
            return [row] if row is not None else []
        rows = await repo.list_by_provider(adapter.provider.value)
        return [r for r in rows if adapter.webhook_matches(r.provider_metadata or {}, payload)]

    @staticmethod
    async def _record_rejection(
        session: AsyncSession,
        subscription,
        targets: list[IntegrationRow],
        message: str,
    ) -> None:
        """Charge a payload the adapter could not read to every subscription it was meant for."""
        subscriptions = WebhookSubscriptionRepository(session)
        subscription_ids = set()
        if subscription is not None:
            subscription_ids.add(subscription.subscription_id)
        else:
            for integration in targets:
                row = await subscriptions.get_for_integration(integration.integration_id, integration.provider)
                if row is not None:
                    subscription_ids.add(row.subscription_id)

        now = utcnow()
        for subscription_id in sorted(subscription_ids):
            await subscriptions.record_error(subscription_id, message, now)
        await session.commit()

    async def _ingest(
        self,
        integration: IntegrationRow,
        items: list[StandardIngestItem],
        result: WebhookResult,
    ) -> OutcomeCounts:
        counts = OutcomeCounts()
        for item in items:
            outcome = await self.processor.process(integration.integration_id, integration.user_id, item)
            counts.add(outcome)
            if outcome.error is not None:
                result.errors.append(outcome.error)

        now = utcnow()
        async with self.session_factory() as session:
            await SyncStateRepository(session).add_items_synced(integration.integration_id, counts.synced)
            subscriptions = WebhookSubscriptionRepository(session)
            subscription = await subscriptions.get_for_integration(integration.integration_id, integration.provider)
            if subscription is not None:
                await subscriptions.record_received(subscription.subscription_id, now)
                if counts.failed:
                    await subscriptions.record_error(
                        subscription.subscription_id,
                        f"{counts.failed} of {counts.processed} items failed",
                        now,
                    )
            await session.commit()
        return counts
