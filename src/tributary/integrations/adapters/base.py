"""Provider adapter contract shared by every external service."""

from __future__ import annotations

import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from tributary.errors.exceptions import TokenRefreshError, UnsupportedOperationError
from tributary.integrations.config import (
    AccountInfo,
    IntegrationDefinition,
    IntegrationTokens,
    OAuthClientConfig,
)
from tributary.integrations.http import RetryPolicy, request_with_retry
from tributary.integrations.normalized import StandardIngestItem
from tributary.integrations.oauth import (
    build_authorization_url,
    exchange_authorization_code,
    refresh_oauth_token,
)
from tributary.models.enums import IntegrationProvider
from tributary.models.sync import SyncOptions

logger = logging.getLogger(__name__)


@dataclass
class SyncContext:
    """What an adapter sees of a connected integration during one call.

    Adapters report an unfinished listing by assigning ``next_cursor`` and
    leave it None once the listing is exhausted. The orchestrator persists it
    and resumes the next run from it with the same ``since`` bound.
    """

    integration_id: str
    user_id: str
    tokens: IntegrationTokens
    metadata: dict[str, Any] = field(default_factory=dict)
    next_cursor: str | None = None


def sign_hmac_sha256(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class ProviderAdapter(ABC):
    """Uniform contract over one external service.

    Subclasses set ``definition`` and implement ``validate_connection`` and
    ``sync``. Webhook-capable providers override ``handle_webhook`` and,
    where the provider signs differently, ``verify_webhook_signature``.
    """

    definition: IntegrationDefinition
    webhook_events: frozenset[str] = frozenset()
    webhook_signature_header: str = "x-signature-256"
    rate_limit_delay: float = 0.0
    default_limit: int | None = None

    def __init__(self, settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self._transport = transport
        self.retry_policy = RetryPolicy.from_settings(settings)

    @property
    def provider(self) -> IntegrationProvider:
        return self.definition.id

    def batch_limit(self, options: SyncOptions) -> int:
        return options.limit or self.default_limit or self.settings.default_sync_limit

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _client(self, **kwargs) -> httpx.AsyncClient:
        """New client bound to the adapter's transport (mockable in tests)."""
        kwargs.setdefault("timeout", self.settings.http_timeout_seconds)
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
        return await request_with_retry(
            client, method, url, provider=self.provider.value, policy=self.retry_policy, **kwargs
        )

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def get_authorization_url(self, state: str) -> str:
        raise UnsupportedOperationError(self.provider.value, "OAuth authorization")

    async def exchange_code_for_tokens(self, code: str) -> IntegrationTokens:
        raise UnsupportedOperationError(self.provider.value, "OAuth code exchange")

    async def refresh_access_token(self, refresh_token: str) -> IntegrationTokens:
        """Exchange a refresh token for fresh tokens.

        Raises:
            TokenRefreshError: The refresh token is invalid or revoked, or the
                provider issues non-expiring tokens.
        """
        raise TokenRefreshError(self.provider.value, "provider does not support token refresh")

    @abstractmethod
    async def validate_connection(self, tokens: IntegrationTokens) -> bool:
        """Check the credentials against the provider.

        Returns:
            True if the provider accepted the credentials.
        """
        ...

    async def get_account_info(self, tokens: IntegrationTokens) -> AccountInfo:
        return AccountInfo()

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    @abstractmethod
    async def sync(self, context: SyncContext, options: SyncOptions) -> list[StandardIngestItem]:
        """Fetch one bounded batch of normalized items.

        Args:
            context: Credentials and metadata of the integration. Set
                ``context.next_cursor`` when items matching ``options``
                remain beyond this batch.
            options: Resolved cursor/since/limit for this run. While a
                cursor is outstanding ``since`` is the bound the listing
                started with, not the newest item seen so far.

        Returns:
            Normalized items, possibly several per upstream record.

        Raises:
            ProviderApiError: Upstream failed after bounded retries.
        """
        ...

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def handle_webhook(self, payload: dict, signature: str | None = None) -> list[StandardIngestItem]:
        """Transform a verified webhook payload into normalized items. Pure."""
        raise UnsupportedOperationError(self.provider.value, "webhooks")

    def verify_webhook_signature(self, body: bytes, headers: Mapping[str, str], secret: str) -> bool:
        """Constant-time check of an HMAC-SHA256 hex signature over the raw body."""
        provided = headers.get(self.webhook_signature_header, "")
        if not provided or not secret:
            return False
        if provided.startswith("sha256="):
            provided = provided[len("sha256="):]
        return hmac.compare_digest(sign_hmac_sha256(body, secret), provided)

    def webhook_event_type(self, headers: Mapping[str, str], payload: dict) -> str | None:
        return payload.get("type") or payload.get("event")

    def is_supported_event(self, event: str | None) -> bool:
        if not self.webhook_events:
            return True
        return event in self.webhook_events

    def webhook_matches(self, metadata: dict[str, Any], payload: dict) -> bool:
        """Whether a provider-level delivery concerns the integration with ``metadata``."""
        return True

    async def register_webhook(self, context: SyncContext, url: str, secret: str) -> dict[str, Any]:
        """Create the upstream subscription. Returns at least ``webhook_id``."""
        raise UnsupportedOperationError(self.provider.value, "webhook registration")

    async def unregister_webhook(self, context: SyncContext, webhook_id: str) -> None:
        raise UnsupportedOperationError(self.provider.value, "webhook registration")


class OAuth2Adapter(ProviderAdapter):
    """Adapter whose credentials come from an OAuth2 authorization-code flow."""

    @abstractmethod
    def oauth_config(self) -> OAuthClientConfig:
        ...

    def redirect_uri(self) -> str:
        return f"{self.settings.app_url.rstrip('/')}/api/v1/integrations/{self.provider.value}/callback"

    def get_authorization_url(self, state: str) -> str:
        return build_authorization_url(self.oauth_config(), state)

    async def exchange_code_for_tokens(self, code: str) -> IntegrationTokens:
        async with self._client() as client:
            return await exchange_authorization_code(
                client, self.oauth_config(), code, provider=self.provider.value, policy=self.retry_policy
            )

    async def refresh_access_token(self, refresh_token: str) -> IntegrationTokens:
        if not refresh_token:
            raise TokenRefreshError(self.provider.value, "no refresh token stored")
        async with self._client() as client:
            tokens = await refresh_oauth_token(
                client, self.oauth_config(), refresh_token, provider=self.provider.value, policy=self.retry_policy
            )
        logger.info("Refreshed %s access token", self.provider.value)
        return tokens


class ApiKeyAdapter(ProviderAdapter):
    """Adapter authenticated by a user-supplied API key stored as the access token."""

    async def validate_api_key(self, api_key: str) -> bool:
        return await self.validate_connection(IntegrationTokens(access_token=api_key))
