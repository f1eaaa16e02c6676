"""Initial schema: integrations, sync state, ingested items, webhooks, pipeline outputs.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _integration_fk() -> sa.Column:
    return sa.Column(
        "integration_id",
        sa.String(128),
        sa.ForeignKey("integrations.integration_id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "integrations",
        sa.Column("integration_id", sa.String(128), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("provider", sa.String(64), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("token_type", sa.String(32), nullable=True),
        sa.Column("scope", sa.Text(), nullable=True),
        sa.Column("account_id", sa.String(256), nullable=True),
        sa.Column("account_name", sa.String(256), nullable=True),
        sa.Column("account_email", sa.String(320), nullable=True),
        sa.Column("provider_metadata", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "provider", name="uq_integrations_user_provider"),
    )
    op.create_index("ix_integrations_user_id", "integrations", ["user_id"])
    op.create_index("ix_integrations_provider", "integrations", ["provider"])

    op.create_table(
        "integration_sync_state",
        sa.Column("sync_state_id", sa.String(128), primary_key=True),
        _integration_fk(),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("provider", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("cursor", sa.Text(), nullable=True),
        sa.Column("last_item_id", sa.String(512), nullable=True),
        sa.Column("last_item_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_successful_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_items_synced", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_synced_this_run", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("integration_id", name="uq_integration_sync_state_integration_id"),
    )
    op.create_index("ix_integration_sync_state_user_id", "integration_sync_state", ["user_id"])
    op.create_index("ix_integration_sync_state_status", "integration_sync_state", ["status"])
    op.create_index("ix_integration_sync_state_next_sync_at", "integration_sync_state", ["next_sync_at"])

    op.create_table(
        "ingested_items",
        sa.Column("ingested_item_id", sa.String(128), primary_key=True),
        _integration_fk(),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("source_provider", sa.String(64), nullable=False),
        sa.Column("source_id", sa.String(512), nullable=False),
        sa.Column("source_hash", sa.String(64), nullable=True),
        sa.Column("source_url", sa.Text(), nullable=True),
        sa.Column("item_type", sa.String(32), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("capture_id", sa.String(128), nullable=True),
        sa.Column("memory_ids", sa.JSON(), nullable=True),
        sa.Column("task_ids", sa.JSON(), nullable=True),
        sa.Column("raw_data", sa.JSON(), nullable=True),
        sa.Column("item_metadata", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("integration_id", "source_id", name="uq_ingested_items_integration_source"),
    )
    op.create_index("ix_ingested_items_integration_id", "ingested_items", ["integration_id"])
    op.create_index("ix_ingested_items_user_id", "ingested_items", ["user_id"])
    op.create_index("ix_ingested_items_status", "ingested_items", ["status"])

    op.create_table(
        "webhook_subscriptions",
        sa.Column("subscription_id", sa.String(128), primary_key=True),
        _integration_fk(),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("provider", sa.String(64), nullable=False),
        sa.Column("webhook_id", sa.Text(), nullable=True),
        sa.Column("webhook_url", sa.Text(), nullable=False),
        sa.Column("secret", sa.String(256), nullable=True),
        sa.Column("events", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("received_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("integration_id", "provider", name="uq_webhook_subscriptions_integration_provider"),
    )
    op.create_index("ix_webhook_subscriptions_integration_id", "webhook_subscriptions", ["integration_id"])
    op.create_index("ix_webhook_subscriptions_user_id", "webhook_subscriptions", ["user_id"])

    op.create_table(
        "captures",
        sa.Column("capture_id", sa.String(128), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("project_id", sa.String(128), nullable=True),
        sa.Column("capture_type", sa.String(20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("source", sa.String(64), nullable=False),
        sa.Column("source_ref", sa.JSON(), nullable=True),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_captures_user_id", "captures", ["user_id"])

    op.create_table(
        "tasks",
        sa.Column("task_id", sa.String(128), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("project_id", sa.String(128), nullable=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="backlog"),
        sa.Column("priority", sa.String(20), nullable=False, server_default="medium"),
        sa.Column("ai_suggested", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("ai_rationale", sa.Text(), nullable=True),
        sa.Column("source", sa.String(64), nullable=False),
        sa.Column("source_capture_id", sa.String(128), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_tasks_user_id", "tasks", ["user_id"])

    op.create_table(
        "ai_memories",
        sa.Column("memory_id", sa.String(128), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("project_id", sa.String(128), nullable=True),
        sa.Column("key", sa.String(512), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("source", sa.String(64), nullable=False),
        sa.Column("confidence", sa.Integer(), nullable=False, server_default="80"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "key", name="uq_ai_memories_user_key"),
    )
    op.create_index("ix_ai_memories_user_id", "ai_memories", ["user_id"])


def downgrade() -> None:
    for table in (
        "ai_memories",
        "tasks",
        "captures",
        "webhook_subscriptions",
        "ingested_items",
        "integration_sync_state",
        "integrations",
    ):
        op.drop_table(table)
