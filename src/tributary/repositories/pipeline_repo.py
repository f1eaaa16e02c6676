"""Repositories for captures, tasks and memories written by the ingestion pipeline."""

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tributary.db.base import generate_id
from tributary.db.models.pipeline import CaptureRow, MemoryRow, TaskRow
from tributary.repositories.base import BaseRepository


class CaptureRepository(BaseRepository[CaptureRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, CaptureRow)


class TaskRepository(BaseRepository[TaskRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, TaskRow)


class MemoryRepository(BaseRepository[MemoryRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, MemoryRow)

    async def get_by_key(self, user_id: str, key: str) -> MemoryRow | None:
        stmt = select(MemoryRow).where(and_(MemoryRow.user_id == user_id, MemoryRow.key == key))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(
        self,
        user_id: str,
        key: str,
        value: str,
        category: str,
        source: str,
        confidence: int,
        project_id: str | None = None,
    ) -> MemoryRow:
        """Write a memory by (user, key), replacing the value of an existing one."""
        row = await self.get_by_key(user_id, key)
        if row is None:
            return await self.create(
                memory_id=generate_id("mem_"),
                user_id=user_id,
                project_id=project_id,
                key=key,
                value=value,
                category=category,
                source=source,
                confidence=confidence,
            )
        return await self.update(row, value=value, category=category, confidence=confidence)
