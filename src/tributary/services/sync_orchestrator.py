"""Sync orchestrator: drives one pull-sync run per integration end to end.

Run lifecycle per integration::

    pending ──▶ syncing ──▶ completed
                   │
                   └──────▶ failed

``paused`` is set and cleared by the user only. Entering ``syncing`` is a
single conditional UPDATE, so concurrent triggers (manual, scheduled, other
processes) cannot run the same integration twice.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import NamedTuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tributary.config import Settings
from tributary.db.base import generate_id, utcnow
from tributary.db.models.integration import IntegrationRow
from tributary.db.models.sync_state import SyncStateRow
from tributary.errors.exceptions import (
    ConflictError,
    NotConnectedError,
    NotFoundError,
    SyncInProgressError,
    TokenRefreshError,
    TributaryError,
)
from tributary.integrations.adapters.base import ProviderAdapter, SyncContext
from tributary.integrations.config import IntegrationTokens
from tributary.integrations.registry import ProviderRegistry
from tributary.logging_config import bind_sync_context, unbind_sync_context
from tributary.models.enums import IntegrationProvider, SyncStatus
from tributary.models.sync import SyncError, SyncOptions, SyncResult, SyncStatusView
from tributary.repositories.ingested_item_repo import IngestedItemRepository
from tributary.repositories.integration_repo import IntegrationRepository
from tributary.repositories.sync_state_repo import SyncStateRepository
from tributary.services.ingestion_pipeline import IngestionPipeline
from tributary.services.item_processor import ItemProcessor, ItemResult, OutcomeCounts

logger = logging.getLogger(__name__)


def _tokens_of(integration: IntegrationRow) -> IntegrationTokens:
    return IntegrationTokens(
        access_token=integration.access_token,
        refresh_token=integration.refresh_token,
        expires_at=integration.expires_at,
        token_type=integration.token_type or "Bearer",
        scope=integration.scope,
    )


def _resolve_provider(provider: IntegrationProvider | str) -> IntegrationProvider:
    if isinstance(provider, IntegrationProvider):
        return provider
    try:
        return IntegrationProvider.from_slug(provider)
    except ValueError:
        raise NotFoundError("Provider", provider)


class _Mark(NamedTuple):
    item_id: str | None
    timestamp: datetime | None


@dataclass
class _Progress:
    """Items of one run that may move the persisted high-water mark.

    The mark stays below the oldest item still marked failed in the ledger,
    so a pull filtered by ``since`` lists that item again and re-dispatches it.
    """

    durable: list[tuple[datetime, str]] = field(default_factory=list)
    earliest_failure: datetime | None = None

    def observe(self, result: ItemResult) -> None:
        if result.durable:
            self.durable.append((result.timestamp, result.source_id))
        elif self.earliest_failure is None or result.timestamp < self.earliest_failure:
            self.earliest_failure = result.timestamp

    def bound_by(self, failed_at: datetime | None) -> None:
        """Also stay below a failure recorded by an earlier run or delivery."""
        if failed_at is not None and (self.earliest_failure is None or failed_at < self.earliest_failure):
            self.earliest_failure = failed_at

    def newest(self) -> _Mark:
        eligible = [
            entry for entry in self.durable
            if self.earliest_failure is None or entry[0] < self.earliest_failure
        ]
        if not eligible:
            return _Mark(None, None)
        timestamp, item_id = max(eligible, key=lambda entry: entry[0])
        return _Mark(item_id, timestamp)

    def merged_with(self, state: SyncStateRow, full_sync: bool) -> _Mark:
        """Combine with the persisted mark; never moves backward outside a full sync."""
        mark = self.newest()
        if mark.timestamp is None:
            return _Mark(state.last_item_id, state.last_item_timestamp)
        if full_sync or state.last_item_timestamp is None or mark.timestamp >= state.last_item_timestamp:
            return mark
        return _Mark(state.last_item_id, state.last_item_timestamp)


class SyncOrchestrator:
    """Runs pull syncs for connected integrations.

    Each run uses short-lived sessions from ``session_factory``: one to claim
    the run, one per processed item, and one to record the outcome. No
    transaction is held open across provider I/O.
    """

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

    # ------------------------------------------------------------------
    # Single integration
    # ------------------------------------------------------------------

    async def sync_integration(
        self,
        user_id: str,
        provider: IntegrationProvider | str,
        options: SyncOptions | None = None,
    ) -> SyncResult:
        """Run one sync for the user's connection to ``provider``.

        Raises:
            NotFoundError: No adapter is registered for the provider.
            NotConnectedError: The user has no integration for the provider.
            SyncInProgressError: Another run currently holds the integration.
            ConflictError: The integration is paused.
        """
        options = options or SyncOptions()
        provider_id = _resolve_provider(provider)
        adapter = self.registry.require(provider_id)

        async with self.session_factory() as session:
            integration = await IntegrationRepository(session).get_by_provider(user_id, provider_id.value)
            if integration is None:
                raise NotConnectedError(provider_id.value)
            state = await SyncStateRepository(session).ensure(
                integration.integration_id, user_id, provider_id.value
            )
            await session.commit()

        bind_sync_context(generate_id("run_"), user_id, provider_id.value)
        try:
            if options.dry_run:
                return await self._dry_run(adapter, integration, state, options)
            await self._claim(integration.integration_id, provider_id)
            return await self._run(adapter, integration, state, options)
        finally:
            unbind_sync_context()

    async def _claim(self, integration_id: str, provider: IntegrationProvider) -> None:
        now = utcnow()
        stale_before = now - timedelta(seconds=self.settings.sync_stale_after_seconds)
        async with self.session_factory() as session:
            states = SyncStateRepository(session)
            started = await states.try_start(integration_id, now, stale_before)
            await session.commit()
            if started:
                return
            current = await states.get_for_integration(integration_id)

        if current is not None and current.status == SyncStatus.PAUSED.value:
            raise ConflictError(f"Integration {provider.value} is paused")
        logger.info("Sync already running for %s, skipping trigger", provider.value)
        raise SyncInProgressError(provider.value)

    async def _run(
        self,
        adapter: ProviderAdapter,
        integration: IntegrationRow,
        state: SyncStateRow,
        options: SyncOptions,
    ) -> SyncResult:
        provider = adapter.provider
        counts = OutcomeCounts()
        progress = _Progress()
        errors: list[SyncError] = []

        try:
            tokens = await self._fresh_tokens(adapter, integration)
            run_options = await self._seed_options(options, state)
            context = SyncContext(
                integration_id=integration.integration_id,
                user_id=integration.user_id,
                tokens=tokens,
                metadata=dict(integration.provider_metadata or {}),
            )
            async with asyncio.timeout(self.settings.sync_run_timeout_seconds):
                fetched = await adapter.sync(context, run_options)

            items = fetched
            if options.types:
                items = [i for i in fetched if i.type in options.types]

            for item in items:
                result = await self.processor.process(integration.integration_id, integration.user_id, item)
                counts.add(result)
                if result.error is not None:
                    errors.append(result.error)
                progress.observe(result)
        except asyncio.CancelledError:
            await asyncio.shield(
                self._record_failure(integration, state, options, "Sync run cancelled", counts, progress)
            )
            raise
        except Exception as exc:
            message = self._failure_message(exc)
            logger.error("Sync failed for %s: %s", provider.value, message, exc_info=not isinstance(exc, TributaryError))
            await self._record_failure(integration, state, options, message, counts, progress)
            return SyncResult(
                success=False,
                provider=provider,
                items_processed=counts.processed,
                items_created=counts.created,
                items_updated=counts.updated,
                items_skipped=counts.skipped,
                items_failed=counts.failed,
                errors=errors + [self._run_error(exc, message)],
            )

        now = utcnow()
        next_sync_at = now + timedelta(minutes=adapter.definition.default_sync_interval)
        async with self.session_factory() as session:
            progress.bound_by(await IngestedItemRepository(session).earliest_failure_at(integration.integration_id))
            mark = progress.merged_with(state, options.full_sync)
            await SyncStateRepository(session).complete(
                integration.integration_id,
                now=now,
                next_sync_at=next_sync_at,
                cursor=context.next_cursor,
                cursor_since=run_options.since,
                last_item_id=mark.item_id,
                last_item_timestamp=mark.timestamp,
                items_synced=counts.synced,
                items_this_run=counts.synced,
            )
            await session.commit()

        limit = adapter.batch_limit(run_options)
        logger.info(
            "Synced %s: %d processed, %d created, %d updated, %d skipped, %d failed",
            provider.value,
            counts.processed,
            counts.created,
            counts.updated,
            counts.skipped,
            counts.failed,
        )
        return SyncResult(
            success=True,
            provider=provider,
            items_processed=counts.processed,
            items_created=counts.created,
            items_updated=counts.updated,
            items_skipped=counts.skipped,
            items_failed=counts.failed,
            errors=errors,
            cursor=context.next_cursor,
            has_more=context.next_cursor is not None or len(fetched) >= limit,
            next_sync_at=next_sync_at,
        )

    async def _dry_run(
        self,
        adapter: ProviderAdapter,
        integration: IntegrationRow,
        state: SyncStateRow,
        options: SyncOptions,
    ) -> SyncResult:
        """Fetch and classify without claiming the run or writing sync state."""
        tokens = await self._fresh_tokens(adapter, integration)
        run_options = await self._seed_options(options, state)
        context = SyncContext(
            integration_id=integration.integration_id,
            user_id=integration.user_id,
            tokens=tokens,
            metadata=dict(integration.provider_metadata or {}),
        )
        async with asyncio.timeout(self.settings.sync_run_timeout_seconds):
            fetched = await adapter.sync(context, run_options)

        counts = OutcomeCounts()
        for item in fetched:
            if options.types and item.type not in options.types:
                continue
            counts.add(
                await self.processor.process(integration.integration_id, integration.user_id, item, dry_run=True)
            )
        return SyncResult(
            success=True,
            provider=adapter.provider,
            items_processed=counts.processed,
            items_created=counts.created,
            items_updated=counts.updated,
            items_skipped=counts.skipped,
            cursor=context.next_cursor,
            has_more=context.next_cursor is not None or len(fetched) >= adapter.batch_limit(run_options),
            dry_run=True,
        )

    async def _seed_options(self, options: SyncOptions, state: SyncStateRow) -> SyncOptions:
        async with self.session_factory() as session:
            failed_at = await IngestedItemRepository(session).earliest_failure_at(state.integration_id)
        return self.resolve_options(options, state, failed_at)

    def resolve_options(
        self,
        options: SyncOptions,
        state: SyncStateRow,
        failed_at: datetime | None = None,
    ) -> SyncOptions:
        """Seed ``cursor``/``since`` from persisted state. Explicit caller values win.

        An outstanding cursor belongs to a listing that started at
        ``cursor_since``; it keeps that bound until the listing is exhausted.
        Only then does ``since`` move up to the newest item seen. While items
        are failed in the ledger (``failed_at``) and no item mark exists, the
        last sync time is not used as a bound, so those items are listed again.
        """
        if options.full_sync or options.cursor:
            return options
        if state.cursor:
            return options.model_copy(
                update={"cursor": state.cursor, "since": options.since or state.cursor_since}
            )
        fallback = state.last_successful_sync_at if failed_at is None else None
        return options.model_copy(
            update={"since": options.since or state.last_item_timestamp or fallback}
        )

    async def _fresh_tokens(self, adapter: ProviderAdapter, integration: IntegrationRow) -> IntegrationTokens:
        """Refresh the access token when it expires inside the buffer window."""
        tokens = _tokens_of(integration)
        if not tokens.refresh_token or not tokens.expires_within(self.settings.token_refresh_buffer_seconds):
            return tokens

        logger.info("Refreshing access token for %s", adapter.provider.value)
        try:
            refreshed = await adapter.refresh_access_token(tokens.refresh_token)
        except TokenRefreshError:
            raise
        except Exception as exc:
            raise TokenRefreshError(adapter.provider.value, str(exc) or exc.__class__.__name__) from exc

        async with self.session_factory() as session:
            repo = IntegrationRepository(session)
            row = await repo.get(integration.integration_id)
            if row is None:
                raise NotConnectedError(adapter.provider.value)
            row = await repo.update_tokens(row, refreshed)
            await session.commit()
        return _tokens_of(row)

    async def _record_failure(
        self,
        integration: IntegrationRow,
        state: SyncStateRow,
        options: SyncOptions,
        message: str,
        counts: OutcomeCounts,
        progress: _Progress,
    ) -> None:
        adapter = self.registry.require(integration.provider)
        now = utcnow()
        async with self.session_factory() as session:
            progress.bound_by(await IngestedItemRepository(session).earliest_failure_at(integration.integration_id))
            mark = progress.merged_with(state, options.full_sync)
            advanced = progress.newest().timestamp is not None
            await SyncStateRepository(session).fail(
                integration.integration_id,
                error=message,
                now=now,
                next_sync_at=now + timedelta(minutes=adapter.definition.default_sync_interval),
                last_item_id=mark.item_id if advanced else None,
                last_item_timestamp=mark.timestamp if advanced else None,
                items_synced=counts.synced,
                items_this_run=counts.synced,
            )
            await session.commit()

    @staticmethod
    def _failure_message(exc: BaseException) -> str:
        if isinstance(exc, TimeoutError):
            return "Sync run exceeded its deadline"
        if isinstance(exc, TributaryError):
            return exc.message
        return str(exc) or exc.__class__.__name__

    @staticmethod
    def _run_error(exc: BaseException, message: str) -> SyncError:
        if isinstance(exc, TributaryError):
            return SyncError(message=message, code=exc.code, recoverable=exc.recoverable)
        if isinstance(exc, TimeoutError):
            return SyncError(message=message, code="SYNC_TIMEOUT", recoverable=True)
        return SyncError(message=message, code="SYNC_FAILED", recoverable=True)

    # ------------------------------------------------------------------
    # Fan-out and status
    # ------------------------------------------------------------------

    async def sync_all_integrations(self, user_id: str, options: SyncOptions | None = None) -> list[SyncResult]:
        """Sync every connected provider concurrently.

        Errors from one provider are reported in its result and never stop
        the others.
        """
        async with self.session_factory() as session:
            integrations = await IntegrationRepository(session).list_by_user(user_id)

        providers = [IntegrationProvider(i.provider) for i in integrations if i.provider in self.registry]
        outcomes = await asyncio.gather(
            *(self.sync_integration(user_id, p, options) for p in providers),
            return_exceptions=True,
        )
        return [self._as_result(p, o) for p, o in zip(providers, outcomes)]

    async def run_due_syncs(self, limit: int | None = None) -> list[SyncResult]:
        """Trigger every integration whose ``next_sync_at`` has arrived."""
        async with self.session_factory() as session:
            due = await SyncStateRepository(session).list_due(utcnow(), limit or self.settings.scheduler_batch_size)

        due = [s for s in due if s.provider in self.registry]
        if not due:
            return []
        logger.info("Running %d due syncs", len(due))
        outcomes = await asyncio.gather(
            *(self.sync_integration(s.user_id, s.provider) for s in due),
            return_exceptions=True,
        )
        return [self._as_result(IntegrationProvider(s.provider), o) for s, o in zip(due, outcomes)]

    @staticmethod
    def _as_result(provider: IntegrationProvider, outcome: SyncResult | BaseException) -> SyncResult:
        if isinstance(outcome, SyncResult):
            return outcome
        if isinstance(outcome, TributaryError):
            error = SyncError(message=outcome.message, code=outcome.code, recoverable=outcome.recoverable)
        elif isinstance(outcome, Exception):
            logger.error("Unexpected error syncing %s", provider.value, exc_info=outcome)
            error = SyncError(message=str(outcome) or outcome.__class__.__name__, code="SYNC_FAILED")
        else:
            raise outcome
        return SyncResult(success=False, provider=provider, errors=[error])

    async def get_sync_status(self, user_id: str, provider: IntegrationProvider | str) -> SyncStatusView:
        provider_id = _resolve_provider(provider)
        async with self.session_factory() as session:
            integration = await IntegrationRepository(session).get_by_provider(user_id, provider_id.value)
            if integration is None:
                raise NotConnectedError(provider_id.value)
            state = await SyncStateRepository(session).get_for_integration(integration.integration_id)
        if state is None:
            return SyncStatusView(provider=provider_id, status=SyncStatus.PENDING)
        return status_view(state)


def status_view(state: SyncStateRow) -> SyncStatusView:
    return SyncStatusView(
        provider=IntegrationProvider(state.provider),
        status=SyncStatus(state.status),
        cursor=state.cursor,
        last_item_id=state.last_item_id,
        last_item_timestamp=state.last_item_timestamp,
        last_sync_at=state.last_sync_at,
        last_successful_sync_at=state.last_successful_sync_at,
        next_sync_at=state.next_sync_at,
        total_items_synced=state.total_items_synced,
        items_synced_this_run=state.items_synced_this_run,
        error_count=state.error_count,
        last_error=state.last_error,
        last_error_at=state.last_error_at,
    )
