"""Task executor: model call with bounded retries, validation and rule-based fallback.

`run_task` never raises for model or output problems. The only exception a
caller sees is `UnknownTaskTypeError`, which signals a deployment mistake.
An actor role the task does not allow is refused without a fallback.
Nothing is persisted here; callers decide whether to record the result.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from upkeep_ai.config import ExecutionSettings
from upkeep_ai.orchestrator.backend.base import CompletionRequest, CompletionResult, ModelBackend
from upkeep_ai.orchestrator.errors import ModelTimeoutError
from upkeep_ai.orchestrator.failure_classifier import classify_model_failure
from upkeep_ai.orchestrator.flags import FeatureFlagGate
from upkeep_ai.orchestrator.models import (
    ActorRole,
    FailureClass,
    PolicyEvent,
    PolicyEventType,
    TaskRequest,
    TaskResult,
)
from upkeep_ai.orchestrator.output_repair import extract_json_object
from upkeep_ai.orchestrator.pricing import estimate_cost_usd
from upkeep_ai.orchestrator.registry import get_task_definition
from upkeep_ai.orchestrator.safety import (
    check_input_safety,
    check_output_safety,
    has_critical,
    sanitize_output,
)
from upkeep_ai.orchestrator.tasks.base import JsonObject, Prompt, TaskDefinition

logger = logging.getLogger(__name__)

_NON_RETRYABLE: frozenset[FailureClass] = frozenset(
    {FailureClass.PROVIDER_UNAVAILABLE, FailureClass.ACCESS_OR_AUTH},
)


@dataclass(slots=True)
class _ModelOutcome:
    output: JsonObject | None
    model: str | None
    attempts: int
    failure_class: FailureClass | None = None
    reason: str | None = None
    diagnostics: dict[str, object] | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    cost_usd: float | None = None

    def record_usage(self, completion: CompletionResult) -> None:
        """Add one completion's token counts and estimated cost to the running totals."""

        self.input_tokens = _add(self.input_tokens, completion.input_tokens)
        self.output_tokens = _add(self.output_tokens, completion.output_tokens)
        self.cost_usd = _add(
            self.cost_usd,
            estimate_cost_usd(
                model=completion.model,
                input_tokens=completion.input_tokens,
                output_tokens=completion.output_tokens,
            ),
        )


@dataclass(slots=True)
class _DecodeOutcome:
    output: JsonObject | None
    failure_class: FailureClass | None = None
    reason: str | None = None


class TaskExecutor:
    """Runs registered tasks against a model backend with fallback on any failure."""

    def __init__(
        self,
        *,
        flag_gate: FeatureFlagGate,
        backend: ModelBackend,
        settings: ExecutionSettings | None = None,
        json_mode: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._flag_gate = flag_gate
        self._backend = backend
        self._settings = settings or ExecutionSettings()
        self._json_mode = json_mode
        self._clock = clock

    def run_task(self, request: TaskRequest) -> TaskResult:
        """Execute one task and return a uniform result envelope."""

        definition = get_task_definition(request.task_type)
        correlation_id = request.correlation_id or uuid4().hex
        started = self._clock()
        events: list[PolicyEvent] = []
        inputs: JsonObject = request.inputs if isinstance(request.inputs, dict) else {}

        role = _actor_role(request.actor_role)
        if role is None or role not in definition.allowed_actors:
            return self._refuse_actor(
                definition,
                request.actor_role,
                correlation_id=correlation_id,
                started=started,
                events=events,
            )

        if not self._flag_gate.is_enabled(definition.flag_key):
            events.append(
                PolicyEvent(
                    PolicyEventType.CAPABILITY_DISABLED,
                    {"flag_key": definition.flag_key},
                ),
            )
            logger.info(
                "Capability disabled, serving fallback correlation_id=%s task_type=%s flag=%s",
                correlation_id,
                definition.task_type.value,
                definition.flag_key,
            )
            return self._serve_fallback(
                definition,
                inputs,
                correlation_id=correlation_id,
                started=started,
                events=events,
                outcome=_ModelOutcome(
                    output=None,
                    model=None,
                    attempts=0,
                    failure_class=FailureClass.CAPABILITY_DISABLED,
                    reason=f"Feature flag {definition.flag_key} is disabled",
                ),
            )

        problems = _input_problems(definition, inputs)
        prompt: Prompt | None = None
        if not problems:
            try:
                prompt = definition.build_prompt(inputs)
            except Exception as error:  # noqa: BLE001
                problems = [f"prompt could not be built: {error}"]
        if problems or prompt is None:
            events.append(PolicyEvent(PolicyEventType.INPUT_REJECTED, {"problems": problems}))
            logger.warning(
                "Input rejected correlation_id=%s task_type=%s problems=%s",
                correlation_id,
                definition.task_type.value,
                "; ".join(problems),
            )
            return self._serve_fallback(
                definition,
                inputs,
                correlation_id=correlation_id,
                started=started,
                events=events,
                outcome=_ModelOutcome(
                    output=None,
                    model=None,
                    attempts=0,
                    failure_class=FailureClass.INPUT_INVALID,
                    reason="Invalid input: " + "; ".join(problems),
                ),
            )

        if not request.skip_safety_checks:
            events.extend(check_input_safety(inputs))

        timeout_seconds = request.timeout_seconds or self._settings.timeout_seconds
        outcome = self._run_model(
            definition,
            prompt,
            correlation_id=correlation_id,
            timeout_seconds=timeout_seconds,
            events=events,
        )
        if outcome.output is not None and not request.skip_safety_checks:
            _screen_output(definition, outcome, correlation_id=correlation_id, events=events)
        if outcome.output is None:
            return self._serve_fallback(
                definition,
                inputs,
                correlation_id=correlation_id,
                started=started,
                events=events,
                outcome=outcome,
            )

        latency_ms = self._elapsed_ms(started)
        logger.info(
            "Task completed correlation_id=%s task_type=%s model=%s attempts=%d latency_ms=%d",
            correlation_id,
            definition.task_type.value,
            outcome.model,
            outcome.attempts,
            latency_ms,
        )
        return TaskResult(
            success=True,
            used_fallback=False,
            output_json=outcome.output,
            correlation_id=correlation_id,
            task_type=definition.task_type,
            model=outcome.model,
            latency_ms=latency_ms,
            attempts=outcome.attempts,
            policy_events=events,
            input_tokens=outcome.input_tokens,
            output_tokens=outcome.output_tokens,
            cost_usd=outcome.cost_usd,
        )

    def _refuse_actor(
        self,
        definition: TaskDefinition,
        actor_role: ActorRole | str,
        *,
        correlation_id: str,
        started: float,
        events: list[PolicyEvent],
    ) -> TaskResult:
        role = actor_role.value if isinstance(actor_role, ActorRole) else str(actor_role)
        task_type = definition.task_type.value
        events.append(
            PolicyEvent(
                PolicyEventType.ACTOR_REJECTED,
                {
                    "actor_role": role,
                    "allowed_actors": [actor.value for actor in definition.allowed_actors],
                },
            ),
        )
        logger.warning(
            "Actor refused correlation_id=%s task_type=%s actor_role=%s",
            correlation_id,
            task_type,
            role,
        )
        return TaskResult(
            success=False,
            used_fallback=False,
            output_json={},
            correlation_id=correlation_id,
            task_type=definition.task_type,
            latency_ms=self._elapsed_ms(started),
            failure_class=FailureClass.ACTOR_NOT_ALLOWED,
            fallback_reason=f"Actor role {role} may not run {task_type}",
            policy_events=events,
        )

    def _run_model(  # noqa: C901
        self,
        definition: TaskDefinition,
        prompt: Prompt,
        *,
        correlation_id: str,
        timeout_seconds: float,
        events: list[PolicyEvent],
    ) -> _ModelOutcome:
        task_type = definition.task_type.value
        if not self._backend.is_available():
            logger.warning(
                "No model backend available correlation_id=%s task_type=%s backend=%s",
                correlation_id,
                task_type,
                self._backend.name,
            )
            return _ModelOutcome(
                output=None,
                model=None,
                attempts=0,
                failure_class=FailureClass.PROVIDER_UNAVAILABLE,
                reason=f"Model backend {self._backend.name} is not available",
            )
        if definition.requires_vision and not self._backend.supports_vision():
            return _ModelOutcome(
                output=None,
                model=None,
                attempts=0,
                failure_class=FailureClass.PROVIDER_UNAVAILABLE,
                reason=f"{task_type} needs vision; backend {self._backend.name} has none",
            )

        max_attempts = 1 + self._settings.max_retries
        outcome = _ModelOutcome(output=None, model=None, attempts=0)
        for attempt in range(1, max_attempts + 1):
            model = self._settings.model_override or (
                definition.preferred_model if attempt == 1 else definition.fallback_model
            )
            if attempt > 1:
                events.append(
                    PolicyEvent(
                        PolicyEventType.MODEL_RETRY,
                        {
                            "attempt": attempt,
                            "model": model,
                            "previous_failure_class": (
                                outcome.failure_class.value if outcome.failure_class else None
                            ),
                        },
                    ),
                )
            outcome.attempts = attempt
            outcome.model = model

            try:
                completion = self._complete(
                    CompletionRequest(
                        model=model,
                        system=prompt.system,
                        user=prompt.user,
                        max_tokens=definition.max_tokens,
                        temperature=definition.temperature,
                        timeout_seconds=timeout_seconds,
                        image_urls=prompt.image_urls,
                        json_mode=self._json_mode,
                    ),
                    timeout_seconds=timeout_seconds,
                )
            except Exception as error:  # noqa: BLE001
                classification = classify_model_failure(error, backend=self._backend.name)
                outcome.failure_class = classification.failure_class
                outcome.reason = f"{classification.reason_code}: {error}"
                outcome.diagnostics = classification.to_event_details(
                    backend=self._backend.name,
                    model=model,
                )
                logger.warning(
                    "Model call failed correlation_id=%s task_type=%s attempt=%d "
                    "failure_class=%s error=%s",
                    correlation_id,
                    task_type,
                    attempt,
                    classification.failure_class.value,
                    error,
                )
                if classification.failure_class in _NON_RETRYABLE:
                    break
                continue

            outcome.model = completion.model
            outcome.record_usage(completion)
            decoded = _decode_output(definition, completion.content, events=events)
            if decoded.output is not None:
                outcome.output = decoded.output
                outcome.failure_class = None
                outcome.reason = None
                return outcome
            outcome.failure_class = decoded.failure_class
            outcome.reason = decoded.reason
            outcome.diagnostics = None
            logger.warning(
                "Model output rejected correlation_id=%s task_type=%s attempt=%d "
                "failure_class=%s reason=%s",
                correlation_id,
                task_type,
                attempt,
                decoded.failure_class.value if decoded.failure_class else None,
                decoded.reason,
            )
        return outcome

    def _complete(self, request: CompletionRequest, *, timeout_seconds: float) -> CompletionResult:
        """Call the backend with a hard wall-clock bound."""

        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="upkeep-ai-model")
        try:
            future = pool.submit(self._backend.complete, request)
            try:
                return future.result(timeout=timeout_seconds)
            except FuturesTimeoutError as error:
                future.cancel()
                raise ModelTimeoutError(
                    f"Model call exceeded {timeout_seconds:.1f}s (model={request.model})",
                ) from error
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    def _serve_fallback(  # noqa: PLR0913
        self,
        definition: TaskDefinition,
        inputs: JsonObject,
        *,
        correlation_id: str,
        started: float,
        events: list[PolicyEvent],
        outcome: _ModelOutcome,
    ) -> TaskResult:
        task_type = definition.task_type.value
        try:
            output = definition.get_fallback(inputs)
            if not definition.validate_output(output):
                raise ValueError(f"fallback output for {task_type} failed validation")
        except Exception as error:
            events.append(
                PolicyEvent(
                    PolicyEventType.FALLBACK_FAILED,
                    {"error": str(error), "trigger": _failure_value(outcome.failure_class)},
                ),
            )
            logger.exception(
                "Fallback failed correlation_id=%s task_type=%s",
                correlation_id,
                task_type,
            )
            return TaskResult(
                success=False,
                used_fallback=False,
                output_json={},
                correlation_id=correlation_id,
                task_type=definition.task_type,
                model=outcome.model,
                latency_ms=self._elapsed_ms(started),
                attempts=outcome.attempts,
                failure_class=FailureClass.FALLBACK_FAILED,
                fallback_reason=f"{outcome.reason}; fallback error: {error}",
                policy_events=events,
                input_tokens=outcome.input_tokens,
                output_tokens=outcome.output_tokens,
                cost_usd=outcome.cost_usd,
            )

        details: dict[str, Any] = {
            "failure_class": _failure_value(outcome.failure_class),
            "reason": outcome.reason,
        }
        if outcome.diagnostics is not None:
            details["classification"] = outcome.diagnostics
        events.append(PolicyEvent(PolicyEventType.FALLBACK_USED, details))
        logger.info(
            "Serving fallback correlation_id=%s task_type=%s failure_class=%s",
            correlation_id,
            task_type,
            _failure_value(outcome.failure_class),
        )
        return TaskResult(
            success=True,
            used_fallback=True,
            output_json=output,
            correlation_id=correlation_id,
            task_type=definition.task_type,
            model=outcome.model,
            latency_ms=self._elapsed_ms(started),
            attempts=outcome.attempts,
            failure_class=outcome.failure_class,
            fallback_reason=outcome.reason,
            policy_events=events,
            input_tokens=outcome.input_tokens,
            output_tokens=outcome.output_tokens,
            cost_usd=outcome.cost_usd,
        )

    def _elapsed_ms(self, started: float) -> int:
        return max(0, int((self._clock() - started) * 1000))


def _input_problems(definition: TaskDefinition, inputs: JsonObject) -> list[str]:
    try:
        return list(definition.validate_input(inputs))
    except Exception as error:  # noqa: BLE001
        return [f"input validation raised {type(error).__name__}: {error}"]


def _decode_output(
    definition: TaskDefinition,
    content: str,
    *,
    events: list[PolicyEvent],
) -> _DecodeOutcome:
    repair = extract_json_object(content)
    if repair.payload is None:
        return _DecodeOutcome(
            output=None,
            failure_class=FailureClass.OUTPUT_INVALID_JSON,
            reason=f"Model output is not a JSON object (strategy={repair.strategy})",
        )
    if repair.repaired:
        events.append(
            PolicyEvent(PolicyEventType.JSON_REPAIR_NEEDED, {"strategy": repair.strategy}),
        )

    missing = definition.missing_output_fields(repair.payload)
    if missing:
        return _DecodeOutcome(
            output=None,
            failure_class=FailureClass.OUTPUT_VALIDATION_FAILED,
            reason=f"Model output missing required fields: {', '.join(missing)}",
        )
    try:
        parsed: dict[str, Any] = definition.parse_output(repair.payload)
    except Exception as error:  # noqa: BLE001
        return _DecodeOutcome(
            output=None,
            failure_class=FailureClass.OUTPUT_VALIDATION_FAILED,
            reason=f"Model output could not be normalised: {error}",
        )
    if not definition.validate_output(parsed):
        return _DecodeOutcome(
            output=None,
            failure_class=FailureClass.OUTPUT_VALIDATION_FAILED,
            reason="Model output failed validation",
        )
    return _DecodeOutcome(output=parsed)


def _failure_value(failure_class: FailureClass | None) -> str | None:
    return failure_class.value if failure_class is not None else None


def _actor_role(role: ActorRole | str) -> ActorRole | None:
    if isinstance(role, ActorRole):
        return role
    try:
        return ActorRole(str(role).strip().lower())
    except ValueError:
        return None


def _add(total: Any, value: Any) -> Any:
    """Sum that stays None until some attempt reports a value."""

    if value is None:
        return total
    return value if total is None else total + value


def _screen_output(
    definition: TaskDefinition,
    outcome: _ModelOutcome,
    *,
    correlation_id: str,
    events: list[PolicyEvent],
) -> None:
    """Record output findings; critical ones are sanitized or the output is dropped."""

    findings = check_output_safety(outcome.output or {})
    events.extend(findings)
    if not has_critical(findings):
        return
    sanitized = sanitize_output(outcome.output or {})
    if definition.validate_output(sanitized):
        outcome.output = sanitized
        events.append(
            PolicyEvent(
                PolicyEventType.OUTPUT_SANITIZED,
                {"findings": [event.event_type.value for event in findings]},
            ),
        )
        logger.warning(
            "Model output sanitized correlation_id=%s task_type=%s",
            correlation_id,
            definition.task_type.value,
        )
        return
    outcome.output = None
    outcome.failure_class = FailureClass.OUTPUT_UNSAFE
    outcome.reason = "Safety sanitization required"
    logger.warning(
        "Unsafe model output dropped correlation_id=%s task_type=%s",
        correlation_id,
        definition.task_type.value,
    )
