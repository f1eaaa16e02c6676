"""Repository for inbound webhook subscriptions."""

from datetime import datetime

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tributary.db.models.webhook_subscription import WebhookSubscriptionRow
from tributary.repositories.base import BaseRepository


class WebhookSubscriptionRepository(BaseRepository[WebhookSubscriptionRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, WebhookSubscriptionRow)

    async def get_for_integration(self, integration_id: str, provider: str) -> WebhookSubscriptionRow | None:
        stmt = select(WebhookSubscriptionRow).where(
            and_(
                WebhookSubscriptionRow.integration_id == integration_id,
                WebhookSubscriptionRow.provider == provider,
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def record_received(self, subscription_id: str, now: datetime) -> None:
        """Count a verified delivery; the first one also stamps ``verified_at``."""
        stmt = (
            update(WebhookSubscriptionRow)
            .where(WebhookSubscriptionRow.subscription_id == subscription_id)
            .values(
                last_received_at=now,
                received_count=WebhookSubscriptionRow.received_count + 1,
                verified_at=func.coalesce(WebhookSubscriptionRow.verified_at, now),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    async def record_error(self, subscription_id: str, error: str, now: datetime) -> None:
        stmt = (
            update(WebhookSubscriptionRow)
            .where(WebhookSubscriptionRow.subscription_id == subscription_id)
            .values(
                error_count=WebhookSubscriptionRow.error_count + 1,
                last_error=error[:4000],
                last_error_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
