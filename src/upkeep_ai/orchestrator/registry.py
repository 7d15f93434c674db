"""Immutable catalogue of task definitions keyed by task type."""

from __future__ import annotations

from collections.abc import Iterable
from types import MappingProxyType

from upkeep_ai.orchestrator.errors import InvalidInputError, UnknownTaskTypeError
from upkeep_ai.orchestrator.models import ActorRole, CapabilityGroup, EntityType, TaskType
from upkeep_ai.orchestrator.tasks import ALL_TASK_DEFINITIONS, TaskDefinition


def _build_registry(
    definitions: Iterable[TaskDefinition],
) -> MappingProxyType[TaskType, TaskDefinition]:
    registry: dict[TaskType, TaskDefinition] = {}
    for definition in definitions:
        if definition.task_type in registry:
            raise ValueError(f"Duplicate task definition: {definition.task_type.value}")
        registry[definition.task_type] = definition
    missing = [task_type.value for task_type in TaskType if task_type not in registry]
    if missing:
        raise ValueError(f"Task types without definition: {', '.join(missing)}")
    return MappingProxyType(registry)


TASK_REGISTRY = _build_registry(ALL_TASK_DEFINITIONS)


def resolve_task_type(task_type: TaskType | str) -> TaskType:
    """Coerce a task type name into the enum, raising for unknown names."""

    if isinstance(task_type, TaskType):
        return task_type
    try:
        return TaskType(task_type)
    except ValueError as exc:
        raise UnknownTaskTypeError(task_type) from exc


def resolve_entity_type(entity_type: EntityType | str) -> EntityType:
    """Coerce an entity type name into the enum; unknown names are caller input errors."""

    if isinstance(entity_type, EntityType):
        return entity_type
    try:
        return EntityType(entity_type)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in EntityType)
        raise InvalidInputError(
            f"Unknown entity type {entity_type!r}; expected one of {allowed}",
        ) from exc


def get_task_definition(task_type: TaskType | str) -> TaskDefinition:
    """Return the definition registered for `task_type`."""

    resolved = resolve_task_type(task_type)
    definition = TASK_REGISTRY.get(resolved)
    if definition is None:
        raise UnknownTaskTypeError(task_type)
    return definition


def all_task_types() -> list[TaskType]:
    return list(TASK_REGISTRY)


def task_types_for_capability(group: CapabilityGroup) -> list[TaskType]:
    return [
        task_type
        for task_type, definition in TASK_REGISTRY.items()
        if definition.capability == group
    ]


def task_types_for_actor(actor: ActorRole) -> list[TaskType]:
    return [
        task_type
        for task_type, definition in TASK_REGISTRY.items()
        if actor in definition.allowed_actors
    ]
