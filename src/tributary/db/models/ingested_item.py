"""Ingested-item dedup ledger DB model."""

from datetime import datetime

from sqlalchemy import JSON, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tributary.db.base import Base, TimestampMixin, UTCDateTime


class IngestedItemRow(Base, TimestampMixin):
    """One external record as last seen, keyed by (integration, source id)."""

    __tablename__ = "ingested_items"
    __table_args__ = (
        UniqueConstraint("integration_id", "source_id", name="uq_ingested_items_integration_source"),
    )

    ingested_item_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    integration_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("integrations.integration_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    source_provider: Mapped[str] = mapped_column(String(64), nullable=False)
    source_id: Mapped[str] = mapped_column(String(512), nullable=False)
    # Cleared when processing fails so the next observation re-dispatches.
    source_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    source_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    item_type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    capture_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    memory_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    task_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    raw_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    item_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)
