"""Provider HTTP calls with bounded retry and exponential back-off."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone

import httpx

from tributary.errors.exceptions import ProviderApiError

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 30.0
    jitter: float = 0.1

    @classmethod
    def from_settings(cls, settings) -> RetryPolicy:
        return cls(
            max_retries=settings.http_max_retries,
            backoff_base=settings.http_backoff_base_seconds,
            backoff_max=settings.http_backoff_max_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Back-off before retry number ``attempt`` (1-based)."""
        delay = min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)
        if delay and self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return delay


def parse_retry_after(value: str | None, cap: float) -> float | None:
    """Parse a ``Retry-After`` header (seconds or HTTP date), capped."""
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - datetime.now(timezone.utc)).total_seconds()
    return max(0.0, min(seconds, cap))


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    policy: RetryPolicy | None = None,
    **kwargs,
) -> httpx.Response:
    """Issue a request, retrying 429/5xx responses and transport errors.

    Other 4xx responses are not retried. Raises ``ProviderApiError`` once
    retries are exhausted or on a non-retryable status.
    """
    policy = policy or RetryPolicy()
    attempt = 0

    while True:
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            if attempt >= policy.max_retries:
                logger.warning(
                    "%s %s failed after %d attempts: %s", method, url, attempt + 1, exc
                )
                raise ProviderApiError(provider, f"{provider} request failed: {exc}") from exc
            attempt += 1
            delay = policy.delay_for(attempt)
            logger.info("Transport error calling %s, retrying in %.2fs (attempt %d)", provider, delay, attempt)
            await asyncio.sleep(delay)
            continue

        if resp.status_code < 400:
            return resp

        if resp.status_code in _RETRYABLE_STATUS and attempt < policy.max_retries:
            attempt += 1
            delay = parse_retry_after(resp.headers.get("retry-after"), policy.backoff_max)
            if delay is None:
                delay = policy.delay_for(attempt)
            logger.info(
                "%s returned HTTP %s, retrying in %.2fs (attempt %d)",
                provider,
                resp.status_code,
                delay,
                attempt,
            )
            await asyncio.sleep(delay)
            continue

        logger.warning("%s %s returned HTTP %s", method, url, resp.status_code)
        raise ProviderApiError(
            provider,
            f"{provider} API returned HTTP {resp.status_code}",
            upstream_status=resp.status_code,
        )
