"""waf notes

Revision ID: 0001_waf_notes
Revises:
Create Date: 2026-10-01 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_waf_notes"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "waf_notes",
        sa.Column("partition_key", sa.String(length=1024), nullable=False),
        sa.Column("row_key", sa.String(length=1024), nullable=False),
        sa.Column("notes_content", sa.Text(), nullable=False, server_default=""),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=True),
        sa.Column("subscription_id", sa.String(), nullable=True),
        sa.Column("resource_group_name", sa.String(), nullable=True),
        sa.Column("waf_policy_name", sa.String(), nullable=True),
        sa.Column("custom_rule_name", sa.String(), nullable=True),
        sa.Column("match_condition_index", sa.Integer(), nullable=True),
        sa.Column("match_value", sa.Text(), nullable=True),
        sa.Column("managed_rule_set_type", sa.String(), nullable=True),
        sa.Column("managed_rule_set_version", sa.String(), nullable=True),
        sa.Column("rule_group_name", sa.String(), nullable=True),
        sa.Column("rule_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("partition_key", "row_key", name="pk_waf_notes"),
    )
    # Partition scans are the hot read path of the notes overlay.
    op.create_index("ix_waf_notes_partition_key", "waf_notes", ["partition_key"])


def downgrade() -> None:
    op.drop_index("ix_waf_notes_partition_key", table_name="waf_notes")
    op.drop_table("waf_notes")
