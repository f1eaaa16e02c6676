"""SQLAlchemy ORM models - import all to register with Base.metadata."""

from tributary.db.models.integration import IntegrationRow
from tributary.db.models.sync_state import SyncStateRow
from tributary.db.models.ingested_item import IngestedItemRow
from tributary.db.models.webhook_subscription import WebhookSubscriptionRow
from tributary.db.models.pipeline import CaptureRow, MemoryRow, TaskRow

__all__ = [
    "CaptureRow",
    "IngestedItemRow",
    "IntegrationRow",
    "MemoryRow",
    "SyncStateRow",
    "TaskRow",
    "WebhookSubscriptionRow",
]
