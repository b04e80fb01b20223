"""create apl_entries, apl_sync_status and apl_sync_runs tables

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17 09:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "apl_entries",
        sa.Column("id", sa.String(length=80), nullable=False),
        sa.Column("state", sa.String(length=2), nullable=False),
        sa.Column("upc", sa.String(length=14), nullable=False),
        sa.Column("eligible", sa.Boolean(), nullable=False),
        sa.Column("benefit_category", sa.String(length=255), nullable=False),
        sa.Column("benefit_subcategory", sa.String(length=255), nullable=True),
        sa.Column("participant_types", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("size_restriction", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("brand_restriction", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("additional_restrictions", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        sa.Column("data_source", sa.String(length=20), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.Column("verified", sa.Boolean(), nullable=False),
        sa.Column("product_description", sa.Text(), nullable=True),
        sa.Column("brand", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("state", "upc", "effective_date", name="uq_apl_entries_state_upc_effective_date"),
    )
    op.create_index("ix_apl_entries_state_upc", "apl_entries", ["state", "upc"], unique=False)
    op.create_index("ix_apl_entries_benefit_category", "apl_entries", ["benefit_category"], unique=False)

    op.create_table(
        "apl_sync_status",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("state", sa.String(length=2), nullable=False),
        sa.Column("data_source", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False),
        sa.Column("entries_count", sa.Integer(), nullable=False),
        sa.Column("file_hash", sa.String(length=64), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_stats", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("state", "data_source", name="uq_apl_sync_status_state_data_source"),
    )

    op.create_table(
        "apl_sync_runs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("state", sa.String(length=2), nullable=False),
        sa.Column("data_source", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("triggered_by", sa.String(length=20), nullable=False),
        sa.Column("source_file_hash", sa.String(length=64), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("total_rows", sa.Integer(), nullable=False),
        sa.Column("valid_entries", sa.Integer(), nullable=False),
        sa.Column("invalid_entries", sa.Integer(), nullable=False),
        sa.Column("duplicates", sa.Integer(), nullable=False),
        sa.Column("additions", sa.Integer(), nullable=False),
        sa.Column("updates", sa.Integer(), nullable=False),
        sa.Column("expirations", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("result_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_apl_sync_runs_state_started_at",
        "apl_sync_runs",
        ["state", "started_at"],
        unique=False,
    )
    op.create_index("ix_apl_sync_runs_status", "apl_sync_runs", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_apl_sync_runs_status", table_name="apl_sync_runs")
    op.drop_index("ix_apl_sync_runs_state_started_at", table_name="apl_sync_runs")
    op.drop_table("apl_sync_runs")
    op.drop_table("apl_sync_status")
    op.drop_index("ix_apl_entries_benefit_category", table_name="apl_entries")
    op.drop_index("ix_apl_entries_state_upc", table_name="apl_entries")
    op.drop_table("apl_entries")
