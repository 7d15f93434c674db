"""Create AI task invocation audit and feedback tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "ai_task_invocations",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("task_type", sa.String(), nullable=False),
        sa.Column("actor_user_id", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=True),
        sa.Column("input_json", sa.Text(), nullable=False),
        sa.Column("input_hash", sa.String(), nullable=False),
        sa.Column("output_json", sa.Text(), nullable=False),
        sa.Column("used_fallback", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("correlation_id", sa.String(), nullable=False),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("failure_class", sa.String(), nullable=True),
        sa.Column("fallback_reason", sa.Text(), nullable=True),
        sa.Column(
            "policy_events_json",
            sa.Text(),
            nullable=False,
            server_default=sa.text("'[]'"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index(
        "idx_ai_task_invocations_entity_time",
        "ai_task_invocations",
        ["entity_type", "entity_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "idx_ai_task_invocations_task_time",
        "ai_task_invocations",
        ["task_type", "created_at"],
        unique=False,
    )
    op.create_index(
        "idx_ai_task_invocations_correlation",
        "ai_task_invocations",
        ["correlation_id"],
        unique=False,
    )

    op.create_table(
        "ai_feedback",
        sa.Column("feedback_id", sa.String(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("actor_user_id", sa.String(), nullable=False),
        sa.Column("rating", sa.String(), nullable=False),
        sa.Column("reason_code", sa.String(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("context_snapshot_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("rating IN ('up', 'down')", name="ck_ai_feedback_rating"),
        sa.ForeignKeyConstraint(
            ["job_id"],
            ["ai_task_invocations.job_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("feedback_id"),
    )
    op.create_index(
        "idx_ai_feedback_job_time",
        "ai_feedback",
        ["job_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_ai_feedback_job_time", table_name="ai_feedback")
    op.drop_table("ai_feedback")
    op.drop_index("idx_ai_task_invocations_correlation", table_name="ai_task_invocations")
    op.drop_index("idx_ai_task_invocations_task_time", table_name="ai_task_invocations")
    op.drop_index("idx_ai_task_invocations_entity_time", table_name="ai_task_invocations")
    op.drop_table("ai_task_invocations")
