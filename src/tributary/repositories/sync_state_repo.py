"""Repository for per-integration sync state.

Every status transition is a single conditional UPDATE so that triggers
coming from several processes cannot run the same integration twice.
"""

from datetime import datetime

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tributary.db.base import generate_id
from tributary.db.models.sync_state import SyncStateRow
from tributary.models.enums import SyncStatus
from tributary.repositories.base import BaseRepository

_STARTABLE = (SyncStatus.PENDING, SyncStatus.COMPLETED, SyncStatus.FAILED)


class SyncStateRepository(BaseRepository[SyncStateRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, SyncStateRow)

    async def get_for_integration(self, integration_id: str) -> SyncStateRow | None:
        stmt = (
            select(SyncStateRow)
            .where(SyncStateRow.integration_id == integration_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure(
        self,
        integration_id: str,
        user_id: str,
        provider: str,
        next_sync_at: datetime | None = None,
    ) -> SyncStateRow:
        """Insert a pending state if none exists, then return the stored row."""
        stmt = (
            self.upsert_insert()
            .values(
                sync_state_id=generate_id("sst_"),
                integration_id=integration_id,
                user_id=user_id,
                provider=provider,
                status=SyncStatus.PENDING.value,
                next_sync_at=next_sync_at,
                error_count=0,
                total_items_synced=0,
                items_synced_this_run=0,
            )
            .on_conflict_do_nothing(index_elements=["integration_id"])
        )
        await self.session.execute(stmt)
        return await self.get_for_integration(integration_id)

    async def try_start(self, integration_id: str, now: datetime, stale_before: datetime) -> bool:
        """Atomically move the state into ``syncing``.

        Succeeds from pending/completed/failed, or from a ``syncing`` state
        whose ``last_sync_at`` predates ``stale_before`` (an abandoned run).
        Returns False when another run holds the integration or it is paused.
        """
        stmt = (
            update(SyncStateRow)
            .where(
                and_(
                    SyncStateRow.integration_id == integration_id,
                    or_(
                        SyncStateRow.status.in_([s.value for s in _STARTABLE]),
                        and_(
                            SyncStateRow.status == SyncStatus.SYNCING.value,
                            or_(
                                SyncStateRow.last_sync_at.is_(None),
                                SyncStateRow.last_sync_at < stale_before,
                            ),
                        ),
                    ),
                )
            )
            .values(
                status=SyncStatus.SYNCING.value,
                last_sync_at=now,
                items_synced_this_run=0,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def complete(
        self,
        integration_id: str,
        *,
        now: datetime,
        next_sync_at: datetime,
        cursor: str | None,
        cursor_since: datetime | None = None,
        last_item_id: str | None,
        last_item_timestamp: datetime | None,
        items_synced: int,
        items_this_run: int,
    ) -> None:
        stmt = (
            update(SyncStateRow)
            .where(SyncStateRow.integration_id == integration_id)
            .values(
                status=SyncStatus.COMPLETED.value,
                cursor=cursor,
                cursor_since=cursor_since if cursor else None,
                last_item_id=last_item_id,
                last_item_timestamp=last_item_timestamp,
                last_sync_at=now,
                last_successful_sync_at=now,
                next_sync_at=next_sync_at,
                error_count=0,
                last_error=None,
                total_items_synced=SyncStateRow.total_items_synced + items_synced,
                items_synced_this_run=items_this_run,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    async def fail(
        self,
        integration_id: str,
        *,
        error: str,
        now: datetime,
        next_sync_at: datetime | None = None,
        last_item_id: str | None = None,
        last_item_timestamp: datetime | None = None,
        items_synced: int = 0,
        items_this_run: int = 0,
    ) -> None:
        """Record a failed run, keeping any progress of items already processed."""
        values = dict(
            status=SyncStatus.FAILED.value,
            error_count=SyncStateRow.error_count + 1,
            last_error=error[:4000],
            last_error_at=now,
            last_sync_at=now,
            total_items_synced=SyncStateRow.total_items_synced + items_synced,
            items_synced_this_run=items_this_run,
            updated_at=now,
        )
        if next_sync_at is not None:
            values["next_sync_at"] = next_sync_at
        if last_item_timestamp is not None:
            values["last_item_id"] = last_item_id
            values["last_item_timestamp"] = last_item_timestamp
        stmt = (
            update(SyncStateRow)
            .where(SyncStateRow.integration_id == integration_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    async def add_items_synced(self, integration_id: str, count: int) -> None:
        """Bump the lifetime counter for items delivered outside a pull run."""
        if count <= 0:
            return
        stmt = (
            update(SyncStateRow)
            .where(SyncStateRow.integration_id == integration_id)
            .values(total_items_synced=SyncStateRow.total_items_synced + count)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    async def set_paused(self, integration_id: str, paused: bool, now: datetime) -> bool:
        """Pause or resume scheduling. Never interrupts a running sync."""
        if paused:
            where = SyncStateRow.status != SyncStatus.SYNCING.value
            status = SyncStatus.PAUSED.value
        else:
            where = SyncStateRow.status == SyncStatus.PAUSED.value
            status = SyncStatus.PENDING.value
        stmt = (
            update(SyncStateRow)
            .where(and_(SyncStateRow.integration_id == integration_id, where))
            .values(status=status, next_sync_at=None if paused else now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def list_due(self, now: datetime, limit: int) -> list[SyncStateRow]:
        """States whose next scheduled sync has arrived, oldest first. Paused states are excluded."""
        stmt = (
            select(SyncStateRow)
            .where(
                and_(
                    SyncStateRow.status.in_([s.value for s in _STARTABLE]),
                    or_(SyncStateRow.next_sync_at.is_(None), SyncStateRow.next_sync_at <= now),
                )
            )
            .order_by(SyncStateRow.next_sync_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
