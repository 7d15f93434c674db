"""Audit, feedback and feature-flag persistence backed by SQLModel + SQLite."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import case, func, literal_column
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from upkeep_ai.orchestrator.errors import PersistenceError, TaskNotFoundError
from upkeep_ai.orchestrator.models import (
    FailureClass,
    FeatureFlagView,
    FeedbackRating,
    FeedbackStats,
    FeedbackView,
    FeedbackWrite,
    TaskInvocationView,
    TaskInvocationWrite,
    TaskUsageRow,
    UsageSummary,
)
from upkeep_ai.orchestrator.safety import sanitize_inputs_for_storage
from upkeep_ai.storage.alembic_runner import upgrade_head
from upkeep_ai.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from upkeep_ai.storage.sqlmodel_models import AiFeedback, AiTaskInvocation, FeatureFlagRecord

DEFAULT_BUSY_TIMEOUT_MS = 5000

# insertion order; breaks ties between rows created within one clock tick
_ROWID = literal_column("rowid")


class AiRepository:
    """Persistence facade for task invocations, feedback and feature flags."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        try:
            upgrade_head(self.db_path)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Schema migration failed for {self.db_path}: {exc}") from exc

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as exc:
            raise PersistenceError(f"AI audit storage error: {exc}") from exc

    # Task invocations

    def insert_task_invocation(self, payload: TaskInvocationWrite) -> TaskInvocationView:
        """Append one invocation record; every call creates a new row.

        Values under sensitive input keys are masked before storage. The input
        hash is taken over the caller's inputs, so equal requests still match.
        """

        result = payload.result
        row = AiTaskInvocation(
            job_id=str(uuid4()),
            task_type=result.task_type.value,
            actor_user_id=payload.actor_user_id,
            entity_type=payload.entity_type.value,
            entity_id=payload.entity_id,
            input_json=_dump_json(sanitize_inputs_for_storage(payload.inputs)),
            input_hash=compute_input_hash(payload.inputs),
            output_json=_dump_json(result.output_json),
            used_fallback=result.used_fallback,
            success=result.success,
            correlation_id=result.correlation_id,
            model=result.model,
            latency_ms=result.latency_ms,
            attempts=result.attempts,
            failure_class=result.failure_class.value if result.failure_class else None,
            fallback_reason=result.fallback_reason,
            policy_events_json=_dump_json([event.to_dict() for event in result.policy_events]),
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            cost_usd=result.cost_usd,
            created_at=to_db_datetime(utc_now()),
            completed_at=to_db_datetime(payload.completed_at),
        )
        with self._session() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_invocation_view(row)

    def get_task_invocation(self, job_id: str) -> TaskInvocationView | None:
        with self._session() as session:
            row = session.exec(
                select(AiTaskInvocation).where(AiTaskInvocation.job_id == job_id),
            ).one_or_none()
            return _to_invocation_view(row) if row is not None else None

    def list_task_invocations(  # noqa: PLR0913
        self,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        task_type: str | None = None,
        correlation_id: str | None = None,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[TaskInvocationView]:
        """List invocations newest first, optionally filtered."""

        statement = select(AiTaskInvocation)
        if entity_type is not None:
            statement = statement.where(AiTaskInvocation.entity_type == entity_type)
        if entity_id is not None:
            statement = statement.where(AiTaskInvocation.entity_id == entity_id)
        if task_type is not None:
            statement = statement.where(AiTaskInvocation.task_type == task_type)
        if correlation_id is not None:
            statement = statement.where(AiTaskInvocation.correlation_id == correlation_id)
        if since is not None:
            statement = statement.where(
                col(AiTaskInvocation.created_at) >= to_db_datetime(since),
            )
        statement = statement.order_by(
            col(AiTaskInvocation.created_at).desc(),
            _ROWID.desc(),
        ).limit(limit)
        with self._session() as session:
            rows = session.exec(statement).all()
            return [_to_invocation_view(row) for row in rows]

    def usage_summary(self, *, since: datetime) -> UsageSummary:
        """Invocation, fallback, failure and token counters per task type since `since`."""

        statement = (
            select(
                AiTaskInvocation.task_type,
                func.count(),
                func.sum(case((col(AiTaskInvocation.used_fallback).is_(True), 1), else_=0)),
                func.sum(case((col(AiTaskInvocation.success).is_(False), 1), else_=0)),
                func.avg(AiTaskInvocation.latency_ms),
                func.coalesce(func.sum(AiTaskInvocation.input_tokens), 0),
                func.coalesce(func.sum(AiTaskInvocation.output_tokens), 0),
                func.coalesce(func.sum(AiTaskInvocation.cost_usd), 0.0),
            )
            .where(col(AiTaskInvocation.created_at) >= to_db_datetime(since))
            .group_by(AiTaskInvocation.task_type)
            .order_by(AiTaskInvocation.task_type)
        )
        with self._session() as session:
            rows = session.exec(statement).all()

        by_task = [
            TaskUsageRow(
                task_type=task_type,
                total=int(total or 0),
                fallbacks=int(fallbacks or 0),
                failures=int(failures or 0),
                avg_latency_ms=float(avg_latency) if avg_latency is not None else None,
                input_tokens=int(input_tokens or 0),
                output_tokens=int(output_tokens or 0),
                cost_usd=float(cost_usd or 0.0),
            )
            for (
                task_type,
                total,
                fallbacks,
                failures,
                avg_latency,
                input_tokens,
                output_tokens,
                cost_usd,
            ) in rows
        ]
        return UsageSummary(
            since=since,
            total=sum(row.total for row in by_task),
            fallbacks=sum(row.fallbacks for row in by_task),
            failures=sum(row.failures for row in by_task),
            by_task=by_task,
            input_tokens=sum(row.input_tokens for row in by_task),
            output_tokens=sum(row.output_tokens for row in by_task),
            cost_usd=sum((row.cost_usd for row in by_task), 0.0),
        )

    # Feedback

    def insert_feedback(self, payload: FeedbackWrite) -> FeedbackView:
        """Append one feedback row; raises `TaskNotFoundError` for an unknown job."""

        with self._session() as session:
            job = session.exec(
                select(AiTaskInvocation.job_id).where(AiTaskInvocation.job_id == payload.job_id),
            ).one_or_none()
            if job is None:
                raise TaskNotFoundError(payload.job_id)
            row = AiFeedback(
                feedback_id=str(uuid4()),
                job_id=payload.job_id,
                actor_user_id=payload.actor_user_id,
                rating=payload.rating.value,
                reason_code=payload.reason_code,
                comment=payload.comment,
                context_snapshot_json=(
                    _dump_json(payload.context_snapshot)
                    if payload.context_snapshot is not None
                    else None
                ),
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_feedback_view(row)

    def list_feedback(self, *, job_id: str | None = None, limit: int = 100) -> list[FeedbackView]:
        statement = select(AiFeedback)
        if job_id is not None:
            statement = statement.where(AiFeedback.job_id == job_id)
        statement = statement.order_by(
            col(AiFeedback.created_at).desc(),
            _ROWID.desc(),
        ).limit(limit)
        with self._session() as session:
            rows = session.exec(statement).all()
            return [_to_feedback_view(row) for row in rows]

    def feedback_stats(
        self,
        *,
        task_type: str | None = None,
        since: datetime | None = None,
    ) -> FeedbackStats:
        """Up/down counts over feedback joined to its invocation."""

        statement = (
            select(AiFeedback.rating, func.count())
            .select_from(AiFeedback)
            .join(AiTaskInvocation, col(AiTaskInvocation.job_id) == col(AiFeedback.job_id))
            .group_by(AiFeedback.rating)
        )
        if task_type is not None:
            statement = statement.where(AiTaskInvocation.task_type == task_type)
        if since is not None:
            statement = statement.where(col(AiFeedback.created_at) >= to_db_datetime(since))
        with self._session() as session:
            counts = {rating: int(count) for rating, count in session.exec(statement).all()}

        upvotes = counts.get(FeedbackRating.UP.value, 0)
        downvotes = counts.get(FeedbackRating.DOWN.value, 0)
        return FeedbackStats(
            task_type=task_type,
            total=upvotes + downvotes,
            upvotes=upvotes,
            downvotes=downvotes,
        )

    # Feature flags

    def get_enabled(self, flag_key: str) -> bool | None:
        with self._session() as session:
            row = session.exec(
                select(FeatureFlagRecord).where(FeatureFlagRecord.flag_key == flag_key),
            ).one_or_none()
            return row.enabled if row is not None else None

    def upsert(
        self,
        *,
        flag_key: str,
        enabled: bool,
        updated_by: str | None,
        description: str | None = None,
    ) -> FeatureFlagView:
        with self._session() as session:
            row = session.exec(
                select(FeatureFlagRecord).where(FeatureFlagRecord.flag_key == flag_key),
            ).one_or_none()
            if row is None:
                row = FeatureFlagRecord(flag_key=flag_key, updated_at=to_db_datetime(utc_now()))
            row.enabled = enabled
            row.updated_by = updated_by
            row.updated_at = to_db_datetime(utc_now())
            if description is not None:
                row.description = description
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_flag_view(row)

    def list_flags(self) -> list[FeatureFlagView]:
        with self._session() as session:
            rows = session.exec(
                select(FeatureFlagRecord).order_by(col(FeatureFlagRecord.flag_key).asc()),
            ).all()
            return [_to_flag_view(row) for row in rows]


def compute_input_hash(inputs: dict[str, Any]) -> str:
    """Stable SHA-256 of the canonical JSON form of task inputs."""

    return hashlib.sha256(_dump_json(inputs).encode("utf-8")).hexdigest()


def _dump_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)


def _load_json(value: str | None, default: Any) -> Any:
    if not value:
        return default
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return default
    return parsed if isinstance(parsed, type(default)) else default


def _to_invocation_view(row: AiTaskInvocation) -> TaskInvocationView:
    return TaskInvocationView(
        job_id=row.job_id,
        task_type=row.task_type,
        actor_user_id=row.actor_user_id,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        inputs=_load_json(row.input_json, {}),
        input_hash=row.input_hash,
        output_json=_load_json(row.output_json, {}),
        used_fallback=row.used_fallback,
        success=row.success,
        correlation_id=row.correlation_id,
        model=row.model,
        latency_ms=row.latency_ms,
        attempts=row.attempts,
        failure_class=FailureClass(row.failure_class) if row.failure_class is not None else None,
        fallback_reason=row.fallback_reason,
        policy_events=_load_json(row.policy_events_json, []),
        created_at=to_utc_aware_datetime(row.created_at),
        completed_at=to_utc_aware_datetime(row.completed_at),
        input_tokens=row.input_tokens,
        output_tokens=row.output_tokens,
        cost_usd=row.cost_usd,
    )


def _to_feedback_view(row: AiFeedback) -> FeedbackView:
    return FeedbackView(
        feedback_id=row.feedback_id,
        job_id=row.job_id,
        actor_user_id=row.actor_user_id,
        rating=FeedbackRating(row.rating),
        reason_code=row.reason_code,
        comment=row.comment,
        context_snapshot=_load_json(row.context_snapshot_json, {}) or None,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_flag_view(row: FeatureFlagRecord) -> FeatureFlagView:
    return FeatureFlagView(
        flag_key=row.flag_key,
        enabled=row.enabled,
        description=row.description,
        updated_by=row.updated_by,
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
