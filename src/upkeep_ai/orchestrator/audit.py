"""Audit trail for task invocations."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from upkeep_ai.orchestrator.errors import (
    InvalidInputError,
    PersistenceError,
    UnknownTaskTypeError,
)
from upkeep_ai.orchestrator.models import (
    EntityType,
    PersistedTask,
    TaskInvocationView,
    TaskInvocationWrite,
    TaskResult,
    TaskType,
    UsageSummary,
)
from upkeep_ai.orchestrator.registry import resolve_entity_type, resolve_task_type
from upkeep_ai.orchestrator.repository import AiRepository
from upkeep_ai.storage.common import utc_now

logger = logging.getLogger(__name__)

DEFAULT_ENTITY_HISTORY_LIMIT = 10


class TaskAuditService:
    """Records task results and answers history queries."""

    def __init__(self, repository: AiRepository) -> None:
        self._repository = repository

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
        """Store one invocation record.

        Raises `InvalidInputError` for an unknown task or entity type and
        `PersistenceError` when storage fails.
        """

        try:
            resolved = resolve_task_type(task_type)
        except UnknownTaskTypeError as exc:
            raise InvalidInputError(str(exc)) from exc
        if resolved != response.task_type:
            raise InvalidInputError(
                f"Task type mismatch: {resolved.value} vs result {response.task_type.value}",
            )
        view = self._repository.insert_task_invocation(
            TaskInvocationWrite(
                task_type=resolved,
                actor_user_id=actor_user_id,
                entity_type=resolve_entity_type(entity_type),
                entity_id=entity_id,
                inputs=inputs,
                result=response,
                completed_at=utc_now(),
            ),
        )
        logger.debug(
            "Persisted task invocation job_id=%s correlation_id=%s task_type=%s",
            view.job_id,
            view.correlation_id,
            view.task_type,
        )
        return PersistedTask(job_id=view.job_id, correlation_id=view.correlation_id)

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
        """Like `persist_task_response`, but failures are logged and return None."""

        try:
            return self.persist_task_response(
                task_type=task_type,
                actor_user_id=actor_user_id,
                entity_type=entity_type,
                entity_id=entity_id,
                inputs=inputs,
                response=response,
            )
        except (InvalidInputError, PersistenceError):
            logger.exception(
                "Failed to persist task invocation correlation_id=%s task_type=%s",
                response.correlation_id,
                response.task_type.value,
            )
            return None

    def get_task_invocation(self, job_id: str) -> TaskInvocationView | None:
        return self._repository.get_task_invocation(job_id)

    def get_task_invocations_for_entity(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        *,
        task_type: TaskType | str | None = None,
        limit: int = DEFAULT_ENTITY_HISTORY_LIMIT,
    ) -> list[TaskInvocationView]:
        """Invocations about one entity, newest first."""

        return self._repository.list_task_invocations(
            entity_type=resolve_entity_type(entity_type).value,
            entity_id=entity_id,
            task_type=resolve_task_type(task_type).value if task_type is not None else None,
            limit=limit,
        )

    def list_task_invocations(
        self,
        *,
        task_type: TaskType | str | None = None,
        correlation_id: str | None = None,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[TaskInvocationView]:
        return self._repository.list_task_invocations(
            task_type=resolve_task_type(task_type).value if task_type is not None else None,
            correlation_id=correlation_id,
            since=since,
            limit=limit,
        )

    def usage_summary(self, *, since: datetime) -> UsageSummary:
        return self._repository.usage_summary(since=since)
