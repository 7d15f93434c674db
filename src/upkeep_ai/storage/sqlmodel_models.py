"""SQLModel ORM tables for AI task audit storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, text
from sqlmodel import Field, SQLModel

SYSTEM_ACTOR_ID = "system"


class AiTaskInvocation(SQLModel, table=True):
    __tablename__ = "ai_task_invocations"  # type: ignore[bad-override]
    __table_args__ = (
        Index(
            "idx_ai_task_invocations_entity_time",
            "entity_type",
            "entity_id",
            "created_at",
        ),
        Index("idx_ai_task_invocations_task_time", "task_type", "created_at"),
        Index("idx_ai_task_invocations_correlation", "correlation_id"),
    )

    job_id: str = Field(primary_key=True)
    task_type: str
    actor_user_id: str
    entity_type: str
    entity_id: str | None = None
    input_json: str = Field(sa_column=Column(Text, nullable=False))
    input_hash: str
    output_json: str = Field(sa_column=Column(Text, nullable=False))
    used_fallback: bool = Field(default=False)
    success: bool = Field(default=True)
    correlation_id: str
    model: str | None = None
    latency_ms: int | None = None
    attempts: int = Field(default=0)
    failure_class: str | None = None
    fallback_reason: str | None = Field(default=None, sa_column=Column(Text))
    policy_events_json: str = Field(
        default="[]",
        sa_column=Column(Text, nullable=False, server_default=text("'[]'")),
    )
    input_tokens: int | None = None
    output_tokens: int | None = None
    cost_usd: float | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AiFeedback(SQLModel, table=True):
    __tablename__ = "ai_feedback"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_ai_feedback_job_time", "job_id", "created_at"),)

    feedback_id: str = Field(primary_key=True)
    job_id: str = Field(
        sa_column=Column(
            ForeignKey("ai_task_invocations.job_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    actor_user_id: str
    rating: str
    reason_code: str | None = None
    comment: str | None = Field(default=None, sa_column=Column(Text))
    context_snapshot_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class FeatureFlagRecord(SQLModel, table=True):
    __tablename__ = "feature_flags"  # type: ignore[bad-override]

    flag_key: str = Field(primary_key=True)
    enabled: bool = Field(default=False)
    description: str | None = None
    updated_by: str | None = None
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
