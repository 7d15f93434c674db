"""Task definition contract shared by every registered AI task."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from upkeep_ai.orchestrator.models import ActorRole, CapabilityGroup, TaskType

JsonObject = dict[str, Any]


@dataclass(frozen=True, slots=True)
class Prompt:
    """System and user messages sent to the model."""

    system: str
    user: str
    image_urls: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TaskDefinition:
    """Contract for one AI capability.

    `get_fallback` must be deterministic, free of I/O and total over inputs
    accepted by `validate_input`; its output must pass `validate_output`.
    `parse_output` normalises a decoded model payload into the same shape.
    """

    task_type: TaskType
    capability: CapabilityGroup
    description: str
    preferred_model: str
    fallback_model: str
    max_tokens: int
    temperature: float
    build_prompt: Callable[[JsonObject], Prompt]
    parse_output: Callable[[JsonObject], JsonObject]
    validate_output: Callable[[JsonObject], bool]
    validate_input: Callable[[JsonObject], list[str]]
    get_fallback: Callable[[JsonObject], JsonObject]
    required_output_fields: tuple[str, ...] = ()
    allowed_actors: tuple[ActorRole, ...] = (ActorRole.SYSTEM,)
    requires_vision: bool = False

    @property
    def flag_key(self) -> str:
        return self.capability.value

    def missing_output_fields(self, payload: JsonObject) -> list[str]:
        """Required top-level fields absent from a raw model payload."""

        return [name for name in self.required_output_fields if payload.get(name) is None]
