"""Connect, configure and disconnect integrations."""

from __future__ import annotations

import logging
import secrets
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tributary.config import Settings
from tributary.db.base import generate_id, utcnow
from tributary.db.models.integration import IntegrationRow
from tributary.db.models.webhook_subscription import WebhookSubscriptionRow
from tributary.errors.exceptions import (
    ConflictError,
    NotConnectedError,
    NotFoundError,
    ProviderApiError,
    UnsupportedOperationError,
    ValidationError,
)
from tributary.integrations.adapters.base import ApiKeyAdapter, OAuth2Adapter, ProviderAdapter, SyncContext
from tributary.integrations.config import IntegrationTokens
from tributary.integrations.oauth import create_oauth_state, verify_oauth_state
from tributary.integrations.registry import ProviderRegistry
from tributary.models.enums import IntegrationProvider, SyncStatus
from tributary.repositories.integration_repo import IntegrationRepository
from tributary.repositories.sync_state_repo import SyncStateRepository
from tributary.repositories.webhook_subscription_repo import WebhookSubscriptionRepository
from tributary.services.sync_orchestrator import status_view

logger = logging.getLogger(__name__)


def context_for(integration: IntegrationRow) -> SyncContext:
    return SyncContext(
        integration_id=integration.integration_id,
        user_id=integration.user_id,
        tokens=IntegrationTokens(
            access_token=integration.access_token,
            refresh_token=integration.refresh_token,
            expires_at=integration.expires_at,
            token_type=integration.token_type or "Bearer",
            scope=integration.scope,
        ),
        metadata=dict(integration.provider_metadata or {}),
    )


class ConnectionService:
    """Owns the integration lifecycle outside of sync runs."""

    def __init__(
        self,
        registry: ProviderRegistry,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
    ):
        self.registry = registry
        self.session_factory = session_factory
        self.settings = settings

    def _adapter(self, provider: str) -> ProviderAdapter:
        try:
            provider_id = IntegrationProvider.from_slug(provider)
        except ValueError:
            raise NotFoundError("Provider", provider)
        return self.registry.require(provider_id)

    # ------------------------------------------------------------------
    # Connect
    # ------------------------------------------------------------------

    def authorization_url(self, user_id: str, provider: str) -> dict[str, str]:
        """Build the provider consent URL with a signed state bound to the user."""
        adapter = self._adapter(provider)
        if not isinstance(adapter, OAuth2Adapter):
            raise UnsupportedOperationError(adapter.provider.value, "OAuth authorization")
        if not adapter.oauth_config().configured:
            raise ValidationError(f"OAuth client for {adapter.provider.value} is not configured")
        state = create_oauth_state(user_id, adapter.provider.value, self.settings.oauth_state_secret)
        return {"authorization_url": adapter.get_authorization_url(state), "state": state}

    async def complete_oauth(self, provider: str, code: str, state: str) -> IntegrationRow:
        """Handle the OAuth callback: verify state, exchange the code, store tokens."""
        adapter = self._adapter(provider)
        user_id = verify_oauth_state(
            state,
            adapter.provider.value,
            self.settings.oauth_state_secret,
            self.settings.oauth_state_max_age_seconds,
        )
        tokens = await adapter.exchange_code_for_tokens(code)
        return await self._store_connection(user_id, adapter, tokens)

    async def connect_api_key(
        self,
        user_id: str,
        provider: str,
        api_key: str,
        metadata: dict[str, Any] | None = None,
    ) -> IntegrationRow:
        adapter = self._adapter(provider)
        if not isinstance(adapter, ApiKeyAdapter):
            raise UnsupportedOperationError(adapter.provider.value, "API key connection")
        if not await adapter.validate_api_key(api_key):
            raise ValidationError(f"Invalid API key for {adapter.provider.value}")
        return await self._store_connection(user_id, adapter, IntegrationTokens(access_token=api_key), metadata)

    async def _store_connection(
        self,
        user_id: str,
        adapter: ProviderAdapter,
        tokens: IntegrationTokens,
        metadata: dict[str, Any] | None = None,
    ) -> IntegrationRow:
        account = await adapter.get_account_info(tokens)
        merged = {k: v for k, v in account.extra.items() if v is not None}
        merged.update(metadata or {})
        now = utcnow()

        async with self.session_factory() as session:
            row = await IntegrationRepository(session).upsert(
                user_id, adapter.provider.value, tokens, account=account, metadata=merged
            )
            # Due immediately so the scheduler performs the initial sync.
            await SyncStateRepository(session).ensure(
                row.integration_id, user_id, adapter.provider.value, next_sync_at=now
            )
            await session.commit()

        logger.info("Connected %s for user %s", adapter.provider.value, user_id)
        return row

    # ------------------------------------------------------------------
    # Manage
    # ------------------------------------------------------------------

    async def list_connections(self, user_id: str) -> list[dict[str, Any]]:
        async with self.session_factory() as session:
            rows = await IntegrationRepository(session).list_by_user(user_id)
            states = SyncStateRepository(session)
            connections = []
            for row in rows:
                state = await states.get_for_integration(row.integration_id)
                definition = self.registry.get_definition(row.provider)
                connections.append({
                    "integration_id": row.integration_id,
                    "provider": row.provider,
                    "name": definition.name if definition else row.provider,
                    "account_name": row.account_name,
                    "account_email": row.account_email,
                    "connected_at": row.created_at,
                    "sync": status_view(state).model_dump(mode="json") if state else None,
                })
        return connections

    async def _require_integration(self, session: AsyncSession, user_id: str, provider: str) -> IntegrationRow:
        adapter = self._adapter(provider)
        row = await IntegrationRepository(session).get_by_provider(user_id, adapter.provider.value)
        if row is None:
            raise NotConnectedError(adapter.provider.value)
        return row

    async def update_metadata(self, user_id: str, provider: str, metadata: dict[str, Any]) -> IntegrationRow:
        """Merge user-chosen settings (e.g. selected repositories) into provider metadata."""
        async with self.session_factory() as session:
            row = await self._require_integration(session, user_id, provider)
            repo = IntegrationRepository(session)
            row = await repo.update(
                row,
                provider_metadata={**(row.provider_metadata or {}), **metadata},
                updated_at=utcnow(),
            )
            await session.commit()
        return row

    async def set_paused(self, user_id: str, provider: str, paused: bool) -> None:
        async with self.session_factory() as session:
            row = await self._require_integration(session, user_id, provider)
            states = SyncStateRepository(session)
            await states.ensure(row.integration_id, user_id, row.provider)
            changed = await states.set_paused(row.integration_id, paused, utcnow())
            await session.commit()
            if changed:
                logger.info("%s %s for user %s", "Paused" if paused else "Resumed", row.provider, user_id)
                return
            state = await states.get_for_integration(row.integration_id)

        if paused and state is not None and state.status == SyncStatus.SYNCING.value:
            raise ConflictError(f"Cannot pause {row.provider} while a sync is running")

    async def disconnect(self, user_id: str, provider: str) -> None:
        """Remove the integration with its sync state, ingested items and subscriptions."""
        async with self.session_factory() as session:
            row = await self._require_integration(session, user_id, provider)
            subscription = await WebhookSubscriptionRepository(session).get_for_integration(
                row.integration_id, row.provider
            )
            if subscription is not None and subscription.webhook_id:
                await self._unregister_upstream(row, subscription)
            await IntegrationRepository(session).delete_cascade(row)
            await session.commit()
        logger.info("Disconnected %s for user %s", row.provider, user_id)

    async def _unregister_upstream(self, row: IntegrationRow, subscription: WebhookSubscriptionRow) -> None:
        adapter = self.registry.require(row.provider)
        try:
            await adapter.unregister_webhook(context_for(row), subscription.webhook_id)
        except ProviderApiError as exc:
            logger.warning("Could not remove %s webhook %s: %s", row.provider, subscription.webhook_id, exc.message)

    # ------------------------------------------------------------------
    # Webhook subscriptions
    # ------------------------------------------------------------------

    async def register_webhook(self, user_id: str, provider: str) -> WebhookSubscriptionRow:
        """Create (or replace) the per-integration webhook endpoint upstream."""
        async with self.session_factory() as session:
            row = await self._require_integration(session, user_id, provider)
            adapter = self.registry.require(row.provider)
            if not adapter.definition.features.webhooks:
                raise UnsupportedOperationError(row.provider, "webhooks")

            subscriptions = WebhookSubscriptionRepository(session)
            existing = await subscriptions.get_for_integration(row.integration_id, row.provider)
            if existing is not None:
                if existing.webhook_id:
                    await self._unregister_upstream(row, existing)
                await session.delete(existing)
                await session.flush()

            subscription_id = generate_id("whs_")
            secret = secrets.token_hex(32)
            url = f"{self.settings.app_url.rstrip('/')}/api/v1/webhooks/{row.provider}/{subscription_id}"
            registered = await adapter.register_webhook(context_for(row), url, secret)

            subscription = await subscriptions.create(
                subscription_id=subscription_id,
                integration_id=row.integration_id,
                user_id=user_id,
                provider=row.provider,
                webhook_id=registered.get("webhook_id"),
                webhook_url=url,
                secret=secret,
                events=registered.get("events") or sorted(adapter.webhook_events),
                is_active=True,
                received_count=0,
                error_count=0,
            )
            await session.commit()

        logger.info("Registered %s webhook subscription %s", row.provider, subscription_id)
        return subscription
