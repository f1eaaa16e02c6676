"""Connected integration DB model."""

from datetime import datetime

from sqlalchemy import JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tributary.db.base import Base, TimestampMixin, UTCDateTime


class IntegrationRow(Base, TimestampMixin):
    """A user's connection to one provider, holding its credentials."""

    __tablename__ = "integrations"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_integrations_user_provider"),)

    integration_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    token_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    account_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    account_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    # Opaque provider data, e.g. GitHub "selected_repositories" or Stripe "stripe_user_id".
    provider_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)
