"""Keep the lower time bound of an unfinished paging chain next to its cursor.

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-20
"""

from alembic import op
import sqlalchemy as sa

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("integration_sync_state", sa.Column("cursor_since", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("integration_sync_state") as batch:
        batch.drop_column("cursor_since")
