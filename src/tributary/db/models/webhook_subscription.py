"""Webhook subscription DB model."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tributary.db.base import Base, TimestampMixin, UTCDateTime


class WebhookSubscriptionRow(Base, TimestampMixin):
    """Inbound webhook endpoint registered for one integration."""

    __tablename__ = "webhook_subscriptions"
    __table_args__ = (
        UniqueConstraint("integration_id", "provider", name="uq_webhook_subscriptions_integration_provider"),
    )

    subscription_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    integration_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("integrations.integration_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    webhook_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    webhook_url: Mapped[str] = mapped_column(Text, nullable=False)
    secret: Mapped[str | None] = mapped_column(String(256), nullable=True)
    events: Mapped[list | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_received_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    received_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
