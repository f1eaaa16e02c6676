"""Shared async repository plumbing."""

from typing import Any, Generic, TypeVar

from sqlalchemy import inspect, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from tributary.db.base import Base

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """CRUD over one mapped row type.

    Repositories flush but never commit; the service that opened the
    session owns the transaction boundary.
    """

    def __init__(self, session: AsyncSession, model_class: type[T]):
        self.session = session
        self.model_class = model_class

    async def get(self, pk_value: str) -> T | None:
        """Fetch by single-column primary key, refreshing any cached instance."""
        pk = inspect(self.model_class).primary_key[0]
        stmt = (
            select(self.model_class)
            .where(pk == pk_value)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_where(self, **filters: Any) -> list[T]:
        result = await self.session.execute(select(self.model_class).filter_by(**filters))
        return list(result.scalars().all())

    async def create(self, **kwargs: Any) -> T:
        row = self.model_class(**kwargs)
        self.session.add(row)
        await self.session.flush()
        return row

    async def update(self, row: T, **kwargs: Any) -> T:
        for key, value in kwargs.items():
            setattr(row, key, value)
        await self.session.flush()
        return row

    def upsert_insert(self):
        """Dialect-specific INSERT supporting ``on_conflict_do_nothing``."""
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(self.model_class)
        if dialect == "sqlite":
            return sqlite.insert(self.model_class)
        raise NotImplementedError(f"Upsert not supported on dialect '{dialect}'")
