"""Declarative provider metadata and credential models."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from tributary.models.enums import (
    AuthMethod,
    IngestItemType,
    IntegrationCategory,
    IntegrationProvider,
    SyncMethod,
)


class IntegrationFeatures(BaseModel):
    model_config = ConfigDict(extra="forbid")

    realtime: bool = False
    bidirectional: bool = False
    incremental_sync: bool = False
    webhooks: bool = False


class IntegrationDefinition(BaseModel):
    """Static capability description published by every provider."""

    model_config = ConfigDict(extra="forbid")

    id: IntegrationProvider
    name: str
    description: str
    category: IntegrationCategory
    auth_method: AuthMethod
    scopes: list[str] = Field(default_factory=list)
    sync_method: SyncMethod
    supported_types: list[IngestItemType] = Field(default_factory=list)
    default_sync_interval: int = Field(15, ge=1, description="Minutes between scheduled syncs")
    features: IntegrationFeatures = Field(default_factory=IntegrationFeatures)
    is_available: bool = True
    is_coming_soon: bool = False


class OAuthClientConfig(BaseModel):
    """OAuth2 client registration for one provider. Secrets come from settings."""

    model_config = ConfigDict(extra="forbid")

    client_id: str
    client_secret: str
    authorization_url: str
    token_url: str
    redirect_uri: str
    scopes: list[str] = Field(default_factory=list)
    scope_separator: str = " "

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


class IntegrationTokens(BaseModel):
    model_config = ConfigDict(extra="forbid")

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    scope: str | None = None

    def expires_within(self, seconds: int, now: datetime | None = None) -> bool:
        """True if the token has an expiry that falls inside the given window."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return (expires_at - now).total_seconds() <= seconds


class AccountInfo(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: str | None = None
    account_name: str | None = None
    account_email: str | None = None
    workspace: str | None = None
    extra: dict = Field(default_factory=dict)
