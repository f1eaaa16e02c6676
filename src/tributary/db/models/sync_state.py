"""Per-integration sync state DB model."""

from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tributary.db.base import Base, TimestampMixin, UTCDateTime


class SyncStateRow(Base, TimestampMixin):
    """Sync progress of one integration.

    ``status`` moves pending -> syncing -> completed|failed. The transition
    into ``syncing`` is only ever made by a conditional UPDATE.
    """

    __tablename__ = "integration_sync_state"

    sync_state_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    integration_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("integrations.integration_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Lower time bound of the paging chain ``cursor`` belongs to.
    cursor_since: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_item_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    last_item_timestamp: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_successful_sync_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    next_sync_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, index=True)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    total_items_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_synced_this_run: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
