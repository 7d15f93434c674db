"""Add token usage and estimated cost to task invocations."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0003"
down_revision = "20261019_0002"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("ai_task_invocations", sa.Column("input_tokens", sa.Integer(), nullable=True))
    op.add_column("ai_task_invocations", sa.Column("output_tokens", sa.Integer(), nullable=True))
    op.add_column("ai_task_invocations", sa.Column("cost_usd", sa.Float(), nullable=True))


def downgrade() -> None:
    op.drop_column("ai_task_invocations", "cost_usd")
    op.drop_column("ai_task_invocations", "output_tokens")
    op.drop_column("ai_task_invocations", "input_tokens")
