"""Repository for the ingested-item dedup ledger."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tributary.db.base import generate_id, utcnow
from tributary.db.models.ingested_item import IngestedItemRow
from tributary.integrations.normalized import StandardIngestItem
from tributary.models.enums import IngestedItemStatus, ItemOutcome
from tributary.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

_MAX_CAS_ATTEMPTS = 3


def _item_values(item: StandardIngestItem) -> dict[str, Any]:
    return dict(
        source_provider=item.source_provider.value,
        source_url=item.source_url,
        item_type=item.type.value,
        title=item.title,
        content=item.content,
        raw_data=item.raw_content,
        item_metadata=item.metadata.model_dump(mode="json", exclude_none=True),
    )


class IngestedItemRepository(BaseRepository[IngestedItemRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, IngestedItemRow)

    async def get_by_source(self, integration_id: str, source_id: str) -> IngestedItemRow | None:
        stmt = (
            select(IngestedItemRow)
            .where(
                and_(
                    IngestedItemRow.integration_id == integration_id,
                    IngestedItemRow.source_id == source_id,
                )
            )
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def classify(self, integration_id: str, source_id: str, source_hash: str) -> ItemOutcome:
        """Decide created/updated/skipped without writing anything."""
        existing = await self.get_by_source(integration_id, source_id)
        if existing is None:
            return ItemOutcome.CREATED
        if existing.source_hash == source_hash:
            return ItemOutcome.SKIPPED
        return ItemOutcome.UPDATED

    async def upsert(
        self,
        integration_id: str,
        user_id: str,
        item: StandardIngestItem,
        source_hash: str,
    ) -> tuple[IngestedItemRow, ItemOutcome]:
        """Insert-or-compare the item against the unique (integration, source id) key.

        A fresh row is ``created``. An existing row with the same hash is
        ``skipped`` and left untouched. A different hash is written with a
        compare-and-swap on the previous hash and reported as ``updated``.
        """
        insert_stmt = (
            self.upsert_insert()
            .values(
                ingested_item_id=generate_id("ing_"),
                integration_id=integration_id,
                user_id=user_id,
                source_id=item.source_id,
                source_hash=source_hash,
                status=IngestedItemStatus.PENDING.value,
                **_item_values(item),
            )
            .on_conflict_do_nothing(index_elements=["integration_id", "source_id"])
            .returning(IngestedItemRow.ingested_item_id)
        )
        inserted_id = (await self.session.execute(insert_stmt)).scalar_one_or_none()
        if inserted_id is not None:
            row = await self.get_by_source(integration_id, item.source_id)
            return row, ItemOutcome.CREATED

        for _ in range(_MAX_CAS_ATTEMPTS):
            existing = await self.get_by_source(integration_id, item.source_id)
            if existing.source_hash == source_hash:
                return existing, ItemOutcome.SKIPPED

            previous = existing.source_hash
            hash_matches = (
                IngestedItemRow.source_hash.is_(None)
                if previous is None
                else IngestedItemRow.source_hash == previous
            )
            stmt = (
                update(IngestedItemRow)
                .where(and_(IngestedItemRow.ingested_item_id == existing.ingested_item_id, hash_matches))
                .values(
                    source_hash=source_hash,
                    status=IngestedItemStatus.PENDING.value,
                    error=None,
                    updated_at=utcnow(),
                    **_item_values(item),
                )
                .execution_options(synchronize_session=False)
            )
            if (await self.session.execute(stmt)).rowcount == 1:
                row = await self.get_by_source(integration_id, item.source_id)
                return row, ItemOutcome.UPDATED
            logger.debug("Concurrent write on %s/%s, re-reading", integration_id, item.source_id)

        raise RuntimeError(f"Could not settle ingested item {item.source_id} after concurrent writes")

    async def mark_processed(
        self,
        row: IngestedItemRow,
        *,
        now: datetime,
        capture_id: str | None,
        memory_ids: list[str],
        task_ids: list[str],
    ) -> IngestedItemRow:
        return await self.update(
            row,
            status=IngestedItemStatus.PROCESSED.value,
            processed_at=now,
            error=None,
            capture_id=capture_id,
            memory_ids=memory_ids,
            task_ids=task_ids,
        )

    async def record_failure(
        self,
        integration_id: str,
        user_id: str,
        item: StandardIngestItem,
        error: str,
    ) -> None:
        """Mark the item failed with a cleared hash so the next observation re-dispatches it."""
        existing = await self.get_by_source(integration_id, item.source_id)
        if existing is None:
            await self.create(
                ingested_item_id=generate_id("ing_"),
                integration_id=integration_id,
                user_id=user_id,
                source_id=item.source_id,
                source_hash=None,
                status=IngestedItemStatus.FAILED.value,
                error=error[:4000],
                **_item_values(item),
            )
            return
        await self.update(existing, status=IngestedItemStatus.FAILED.value, error=error[:4000], source_hash=None)

    async def earliest_failure_at(self, integration_id: str) -> datetime | None:
        """Oldest item timestamp among rows still marked failed."""
        stmt = select(IngestedItemRow.item_metadata).where(
            and_(
                IngestedItemRow.integration_id == integration_id,
                IngestedItemRow.status == IngestedItemStatus.FAILED.value,
            )
        )
        stamps = []
        for metadata in (await self.session.execute(stmt)).scalars():
            raw = (metadata or {}).get("updated_at") or (metadata or {}).get("timestamp")
            if raw:
                stamp = datetime.fromisoformat(raw)
                stamps.append(stamp if stamp.tzinfo else stamp.replace(tzinfo=timezone.utc))
        return min(stamps, default=None)

    async def list_by_integration(
        self,
        integration_id: str,
        status: IngestedItemStatus | None = None,
        limit: int = 100,
    ) -> list[IngestedItemRow]:
        stmt = select(IngestedItemRow).where(IngestedItemRow.integration_id == integration_id)
        if status is not None:
            stmt = stmt.where(IngestedItemRow.status == status.value)
        stmt = stmt.order_by(IngestedItemRow.updated_at.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_integration(self, integration_id: str) -> int:
        stmt = select(func.count()).select_from(IngestedItemRow).where(
            IngestedItemRow.integration_id == integration_id
        )
        return (await self.session.execute(stmt)).scalar_one()
