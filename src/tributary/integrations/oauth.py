"""Shared OAuth2 helpers: authorization URLs, code exchange, refresh, signed state."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import httpx

from tributary.errors.exceptions import ProviderApiError, TokenRefreshError, ValidationError
from tributary.integrations.config import IntegrationTokens, OAuthClientConfig
from tributary.integrations.http import RetryPolicy, request_with_retry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Authorization URL
# ---------------------------------------------------------------------------


def build_authorization_url(oauth: OAuthClientConfig, state: str, **extra_params: str) -> str:
    params = {
        "client_id": oauth.client_id,
        "redirect_uri": oauth.redirect_uri,
        "response_type": "code",
        "state": state,
    }
    if oauth.scopes:
        params["scope"] = oauth.scope_separator.join(oauth.scopes)
    params.update(extra_params)
    return f"{oauth.authorization_url}?{urlencode(params)}"


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------


def tokens_from_response(data: dict, previous_refresh_token: str | None = None) -> IntegrationTokens:
    """Build tokens from a token-endpoint JSON body.

    Keeps ``previous_refresh_token`` when the provider does not rotate it.
    """
    access_token = data.get("access_token")
    if not access_token:
        raise ValueError("token response has no access_token")
    expires_at = None
    if data.get("expires_in"):
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(data["expires_in"]))
    return IntegrationTokens(
        access_token=access_token,
        refresh_token=data.get("refresh_token") or previous_refresh_token,
        expires_at=expires_at,
        token_type=data.get("token_type") or "Bearer",
        scope=data.get("scope"),
    )


async def exchange_authorization_code(
    client: httpx.AsyncClient,
    oauth: OAuthClientConfig,
    code: str,
    *,
    provider: str,
    policy: RetryPolicy | None = None,
) -> IntegrationTokens:
    resp = await request_with_retry(
        client,
        "POST",
        oauth.token_url,
        provider=provider,
        policy=policy,
        data={
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": oauth.redirect_uri,
            "client_id": oauth.client_id,
            "client_secret": oauth.client_secret,
        },
        headers={"Accept": "application/json"},
    )
    try:
        return tokens_from_response(resp.json())
    except ValueError as exc:
        raise ProviderApiError(provider, f"Malformed token response from {provider}: {exc}") from exc


async def refresh_oauth_token(
    client: httpx.AsyncClient,
    oauth: OAuthClientConfig,
    refresh_token: str,
    *,
    provider: str,
    policy: RetryPolicy | None = None,
) -> IntegrationTokens:
    """Exchange a refresh token. Raises ``TokenRefreshError`` on rejection."""
    try:
        resp = await request_with_retry(
            client,
            "POST",
            oauth.token_url,
            provider=provider,
            policy=policy,
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": oauth.client_id,
                "client_secret": oauth.client_secret,
            },
            headers={"Accept": "application/json"},
        )
        return tokens_from_response(resp.json(), previous_refresh_token=refresh_token)
    except ProviderApiError as exc:
        raise TokenRefreshError(provider, exc.message) from exc
    except ValueError as exc:
        raise TokenRefreshError(provider, str(exc)) from exc


# ---------------------------------------------------------------------------
# Signed state
# ---------------------------------------------------------------------------


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _unb64(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def create_oauth_state(user_id: str, provider: str, secret: str) -> str:
    """Return an HMAC-signed, timestamped state binding the flow to a user."""
    payload = {
        "u": user_id,
        "p": provider,
        "t": int(time.time()),
        "n": secrets.token_hex(16),
    }
    body = _b64(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    signature = hmac.new(secret.encode("utf-8"), body.encode("ascii"), hashlib.sha256).hexdigest()
    return f"{body}.{signature}"


def verify_oauth_state(state: str, provider: str, secret: str, max_age_seconds: int = 600) -> str:
    """Validate a state produced by ``create_oauth_state`` and return the user id."""
    try:
        body, signature = state.rsplit(".", 1)
    except ValueError:
        raise ValidationError("Malformed OAuth state") from None

    expected = hmac.new(secret.encode("utf-8"), body.encode("ascii"), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature):
        raise ValidationError("Invalid OAuth state signature")

    try:
        payload = json.loads(_unb64(body))
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("Malformed OAuth state") from None

    if payload.get("p") != provider:
        raise ValidationError("OAuth state was issued for a different provider")
    if abs(time.time() - int(payload.get("t", 0))) > max_age_seconds:
        raise ValidationError("OAuth state expired")
    return payload["u"]
