"""Per-item dedup, pipeline dispatch and write-back.

Shared by pull sync and webhook delivery so both paths converge on the
same ledger row for the same (integration, source id).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tributary.db.base import utcnow
from tributary.errors.exceptions import ItemProcessingError
from tributary.integrations.hashing import content_hash
from tributary.integrations.normalized import StandardIngestItem
from tributary.models.enums import ItemOutcome
from tributary.models.sync import SyncError
from tributary.repositories.ingested_item_repo import IngestedItemRepository
from tributary.services.ingestion_pipeline import IngestionPipeline, PreviousOutputs

logger = logging.getLogger(__name__)


@dataclass
class ItemResult:
    source_id: str
    outcome: ItemOutcome
    timestamp: datetime
    error: SyncError | None = None

    @property
    def durable(self) -> bool:
        """Whether the ledger now reflects this item as processed or unchanged."""
        return self.outcome in (ItemOutcome.CREATED, ItemOutcome.UPDATED, ItemOutcome.SKIPPED)


@dataclass
class OutcomeCounts:
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    def add(self, result: ItemResult) -> None:
        self.processed += 1
        if result.outcome == ItemOutcome.CREATED:
            self.created += 1
        elif result.outcome == ItemOutcome.UPDATED:
            self.updated += 1
        elif result.outcome == ItemOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1

    @property
    def synced(self) -> int:
        return self.created + self.updated


class ItemProcessor:
    """Runs one normalized item through the ledger and the ingestion pipeline.

    Every item commits in its own transaction; a failure rolls back only that
    item and is recorded on its ledger row with a cleared hash.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], pipeline: IngestionPipeline):
        self.session_factory = session_factory
        self.pipeline = pipeline

    async def process(
        self,
        integration_id: str,
        user_id: str,
        item: StandardIngestItem,
        dry_run: bool = False,
    ) -> ItemResult:
        source_hash = content_hash(item)
        timestamp = item.metadata.updated_at or item.metadata.timestamp

        if dry_run:
            async with self.session_factory() as session:
                outcome = await IngestedItemRepository(session).classify(
                    integration_id, item.source_id, source_hash
                )
            return ItemResult(item.source_id, outcome, timestamp)

        try:
            async with self.session_factory() as session:
                items = IngestedItemRepository(session)
                row, outcome = await items.upsert(integration_id, user_id, item, source_hash)
                if outcome == ItemOutcome.SKIPPED:
                    return ItemResult(item.source_id, outcome, timestamp)

                previous = PreviousOutputs(capture_id=row.capture_id, task_ids=list(row.task_ids or []))
                dispatched = await self.pipeline.process(session, user_id, item, previous)
                await items.mark_processed(
                    row,
                    now=utcnow(),
                    capture_id=dispatched.capture_id,
                    memory_ids=dispatched.memory_ids,
                    task_ids=dispatched.task_ids,
                )
                await session.commit()
            return ItemResult(item.source_id, outcome, timestamp)
        except Exception as exc:
            error = ItemProcessingError(item.source_id, str(exc) or exc.__class__.__name__)
            logger.warning(
                "Failed to process %s item %s: %s",
                item.source_provider.value,
                item.source_id,
                error.message,
                exc_info=True,
            )
            async with self.session_factory() as session:
                await IngestedItemRepository(session).record_failure(
                    integration_id, user_id, item, error.message
                )
                await session.commit()
            return ItemResult(
                item.source_id,
                ItemOutcome.FAILED,
                timestamp,
                error=SyncError(
                    item_id=item.source_id,
                    message=error.message,
                    code=error.code,
                    recoverable=error.recoverable,
                ),
            )
