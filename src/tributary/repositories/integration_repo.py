"""Repository for connected integrations."""

from typing import Any

from sqlalchemy import and_, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tributary.db.base import generate_id, utcnow
from tributary.db.models.ingested_item import IngestedItemRow
from tributary.db.models.integration import IntegrationRow
from tributary.db.models.sync_state import SyncStateRow
from tributary.db.models.webhook_subscription import WebhookSubscriptionRow
from tributary.integrations.config import AccountInfo, IntegrationTokens
from tributary.repositories.base import BaseRepository


class IntegrationRepository(BaseRepository[IntegrationRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, IntegrationRow)

    async def get_by_provider(self, user_id: str, provider: str) -> IntegrationRow | None:
        stmt = select(IntegrationRow).where(
            and_(
                IntegrationRow.user_id == user_id,
                IntegrationRow.provider == provider,
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_user(self, user_id: str) -> list[IntegrationRow]:
        return await self.list_where(user_id=user_id)

    async def list_by_provider(self, provider: str) -> list[IntegrationRow]:
        return await self.list_where(provider=provider)

    async def upsert(
        self,
        user_id: str,
        provider: str,
        tokens: IntegrationTokens,
        account: AccountInfo | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> IntegrationRow:
        """Create the user's integration for ``provider`` or replace its credentials."""
        account = account or AccountInfo()
        values = dict(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at,
            token_type=tokens.token_type,
            scope=tokens.scope,
            account_id=account.account_id,
            account_name=account.account_name,
            account_email=account.account_email,
        )
        row = await self.get_by_provider(user_id, provider)
        if row is None:
            return await self.create(
                integration_id=generate_id("intg_"),
                user_id=user_id,
                provider=provider,
                provider_metadata=metadata or {},
                **values,
            )
        if metadata is not None:
            values["provider_metadata"] = {**(row.provider_metadata or {}), **metadata}
        return await self.update(row, **values)

    async def update_tokens(self, row: IntegrationRow, tokens: IntegrationTokens) -> IntegrationRow:
        """Persist refreshed tokens, keeping the stored refresh token if none was issued."""
        return await self.update(
            row,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or row.refresh_token,
            expires_at=tokens.expires_at,
            updated_at=utcnow(),
        )

    async def delete_cascade(self, row: IntegrationRow) -> None:
        """Delete the integration with its sync state, ingested items and subscriptions."""
        for model in (IngestedItemRow, SyncStateRow, WebhookSubscriptionRow):
            await self.session.execute(delete(model).where(model.integration_id == row.integration_id))
        await self.session.delete(row)
        await self.session.flush()
