"""Request and result models for sync runs and webhook deliveries."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from tributary.models.enums import IngestItemType, IntegrationProvider, SyncStatus


class SyncOptions(BaseModel):
    """Caller-supplied knobs for a single sync run."""

    model_config = ConfigDict(extra="forbid")

    full_sync: bool = False
    limit: int | None = Field(None, ge=1, le=1000)
    since: datetime | None = None
    cursor: str | None = None
    types: list[IngestItemType] | None = None
    dry_run: bool = False


class SyncError(BaseModel):
    """One entry of ``SyncResult.errors``."""

    model_config = ConfigDict(extra="forbid")

    item_id: str | None = None
    message: str
    code: str
    recoverable: bool = True


class SyncResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    provider: IntegrationProvider
    items_processed: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_skipped: int = 0
    items_failed: int = 0
    errors: list[SyncError] = Field(default_factory=list)
    cursor: str | None = None
    has_more: bool = False
    next_sync_at: datetime | None = None
    dry_run: bool = False


class SyncStatusView(BaseModel):
    """Read-only projection of a persisted sync state."""

    model_config = ConfigDict(extra="forbid")

    provider: IntegrationProvider
    status: SyncStatus
    cursor: str | None = None
    last_item_id: str | None = None
    last_item_timestamp: datetime | None = None
    last_sync_at: datetime | None = None
    last_successful_sync_at: datetime | None = None
    next_sync_at: datetime | None = None
    total_items_synced: int = 0
    items_synced_this_run: int = 0
    error_count: int = 0
    last_error: str | None = None
    last_error_at: datetime | None = None


class WebhookResult(BaseModel):
    """Acknowledgement returned to the provider for a webhook delivery."""

    model_config = ConfigDict(extra="forbid")

    received: bool = True
    processed: bool = False
    event: str | None = None
    integrations_matched: int = 0
    items_processed: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_skipped: int = 0
    items_failed: int = 0
    errors: list[SyncError] = Field(default_factory=list)
