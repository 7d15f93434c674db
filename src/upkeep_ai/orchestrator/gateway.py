"""Single entry point that wires settings, storage, flags, backend and services."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from upkeep_ai.config import Settings
from upkeep_ai.orchestrator.audit import DEFAULT_ENTITY_HISTORY_LIMIT, TaskAuditService
from upkeep_ai.orchestrator.backend import ModelBackend, build_backend
from upkeep_ai.orchestrator.executor import TaskExecutor
from upkeep_ai.orchestrator.feedback import FeedbackService
from upkeep_ai.orchestrator.flags import FeatureFlagGate
from upkeep_ai.orchestrator.models import (
    CapabilityGroup,
    EntityType,
    FeatureFlagView,
    FeedbackRating,
    FeedbackStats,
    PersistedTask,
    TaskInvocationView,
    TaskRequest,
    TaskResult,
    TaskType,
    UsageSummary,
)
from upkeep_ai.orchestrator.registry import get_task_definition
from upkeep_ai.orchestrator.repository import AiRepository
from upkeep_ai.orchestrator.tasks import TaskDefinition

logger = logging.getLogger(__name__)


class AiGateway:
    """Facade over the orchestration layer used by the CLI and batch jobs."""

    def __init__(
        self,
        *,
        repository: AiRepository,
        flag_gate: FeatureFlagGate,
        backend: ModelBackend,
        executor: TaskExecutor,
    ) -> None:
        self.repository = repository
        self.flag_gate = flag_gate
        self.backend = backend
        self.executor = executor
        self.audit = TaskAuditService(repository)
        self.feedback = FeedbackService(repository)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        backend: ModelBackend | None = None,
        init_schema: bool = True,
    ) -> AiGateway:
        """Build production wiring; pass `backend` to replace the hosted model provider."""

        settings.validate()
        repository = AiRepository(settings.db_path)
        if init_schema:
            repository.init_schema()
        flag_gate = FeatureFlagGate(repository, ttl_seconds=settings.flags.cache_ttl_seconds)
        if init_schema:
            created = flag_gate.seed_default_flags(enabled=settings.flags.enabled_on_init)
            if created:
                logger.info("Seeded feature flags: %s", ", ".join(created))
        model_backend = backend if backend is not None else build_backend(settings.model)
        executor = TaskExecutor(
            flag_gate=flag_gate,
            backend=model_backend,
            settings=settings.execution,
            json_mode=settings.model.json_mode,
        )
        return cls(
            repository=repository,
            flag_gate=flag_gate,
            backend=model_backend,
            executor=executor,
        )

    def close(self) -> None:
        self.backend.close()
        self.repository.close()

    def __enter__(self) -> AiGateway:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def run_task(self, request: TaskRequest) -> TaskResult:
        return self.executor.run_task(request)

    def persist_task_response(  # noqa: PLR0913
        self,
        *,
        task_type: TaskType | str,
        actor_user_id: str,
        entity_type: EntityType | str,
        entity_id: str | None,
        inputs: dict[str, Any],
        response: TaskResult,
    ) -> PersistedTask:
        return self.audit.persist_task_response(
            task_type=task_type,
            actor_user_id=actor_user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            inputs=inputs,
            response=response,
        )

    def persist_task_response_best_effort(  # noqa: PLR0913
        self,
        *,
        task_type: TaskType | str,
        actor_user_id: str,
        entity_type: EntityType | str,
        entity_id: str | None,
        inputs: dict[str, Any],
        response: TaskResult,
    ) -> PersistedTask | None:
        return self.audit.persist_task_response_best_effort(
            task_type=task_type,
            actor_user_id=actor_user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            inputs=inputs,
            response=response,
        )

    def run_and_record(self, request: TaskRequest) -> tuple[TaskResult, PersistedTask | None]:
        """Run a task and store its result without letting storage errors surface."""

        result = self.run_task(request)
        persisted = self.persist_task_response_best_effort(
            task_type=result.task_type,
            actor_user_id=request.actor_user_id,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            inputs=request.inputs,
            response=result,
        )
        return result, persisted

    def submit_feedback(  # noqa: PLR0913
        self,
        *,
        job_id: str,
        actor_user_id: str,
        rating: FeedbackRating | str,
        reason_code: str | None = None,
        comment: str | None = None,
        context_snapshot: dict[str, Any] | None = None,
    ) -> str:
        return self.feedback.submit_feedback(
            job_id=job_id,
            actor_user_id=actor_user_id,
            rating=rating,
            reason_code=reason_code,
            comment=comment,
            context_snapshot=context_snapshot,
        )

    def get_task_definition(self, task_type: TaskType | str) -> TaskDefinition:
        return get_task_definition(task_type)

    def is_feature_enabled(self, flag_key: str | CapabilityGroup) -> bool:
        return self.flag_gate.is_enabled(flag_key)

    def set_feature_flag(
        self,
        flag_key: str | CapabilityGroup,
        enabled: bool,
        *,
        updated_by: str | None = None,
    ) -> FeatureFlagView:
        return self.flag_gate.set_flag(flag_key, enabled, updated_by=updated_by)

    def get_task_invocations_for_entity(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        *,
        task_type: TaskType | str | None = None,
        limit: int = DEFAULT_ENTITY_HISTORY_LIMIT,
    ) -> list[TaskInvocationView]:
        return self.audit.get_task_invocations_for_entity(
            entity_type,
            entity_id,
            task_type=task_type,
            limit=limit,
        )

    def feedback_stats(self, task_type: str | None = None) -> FeedbackStats:
        return self.feedback.feedback_stats(task_type)

    def usage_summary(self, *, since: datetime) -> UsageSummary:
        return self.audit.usage_summary(since=since)
