"""add source ETag / Last-Modified columns to apl_sync_status

Revision ID: 20261017_0002
Revises: 20261017_0001
Create Date: 2026-10-17 15:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "20261017_0002"
down_revision = "20261017_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "apl_sync_status",
        sa.Column("source_etag", sa.String(length=255), nullable=True),
    )
    op.add_column(
        "apl_sync_status",
        sa.Column("source_last_modified", sa.String(length=64), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("apl_sync_status", "source_last_modified")
    op.drop_column("apl_sync_status", "source_etag")
