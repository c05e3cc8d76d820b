"""Review items, planner sync runs and the review audit trail."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20241015_01_review_scheduling"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "review_items",
        sa.Column("owner_id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("subject_label", sa.Text(), nullable=False, server_default=""),
        sa.Column("topic_label", sa.Text(), nullable=False, server_default=""),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("stage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_review_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("origin", sa.String(length=16), nullable=False, server_default="manual"),
        sa.Column("source_task_id", sa.String(length=128), nullable=True),
        sa.Column("follow_up_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("priority", sa.String(length=16), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.UniqueConstraint(
            "owner_id",
            "source_task_id",
            "follow_up_days",
            name="uq_review_items_source_offset",
        ),
    )
    op.create_index(
        "ix_review_items_owner_due",
        "review_items",
        ["owner_id", "completed", "next_review_at"],
    )

    op.create_table(
        "planner_sync_runs",
        sa.Column("owner_id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "review_audit_events",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("item_id", sa.String(length=64), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_review_audit_events_owner", "review_audit_events", ["owner_id"])


def downgrade() -> None:
    op.drop_index("ix_review_audit_events_owner", table_name="review_audit_events")
    op.drop_table("review_audit_events")
    op.drop_table("planner_sync_runs")
    op.drop_index("ix_review_items_owner_due", table_name="review_items")
    op.drop_table("review_items")
