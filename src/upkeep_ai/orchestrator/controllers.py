"""Controllers for AI orchestration CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from upkeep_ai.config import Settings
from upkeep_ai.orchestrator.batch import ReferralRecord, run_fraud_review_batch
from upkeep_ai.orchestrator.errors import InvalidInputError
from upkeep_ai.orchestrator.gateway import AiGateway
from upkeep_ai.orchestrator.models import (
    ActorRole,
    CapabilityGroup,
    TaskRequest,
)
from upkeep_ai.orchestrator.registry import (
    TASK_REGISTRY,
    get_task_definition,
    resolve_entity_type,
    task_types_for_actor,
    task_types_for_capability,
)


@dataclass(slots=True)
class DbInitCommand:
    """CLI input for schema creation and flag seeding."""

    db_path: Path | None


@dataclass(slots=True)
class TasksListCommand:
    """CLI input for the task catalogue listing."""

    capability: str | None
    actor: str | None


@dataclass(slots=True)
class TaskRunCommand:
    """CLI input for one task execution."""

    db_path: Path | None
    task_type: str
    inputs_json: str | None
    inputs_path: Path | None
    actor_user_id: str
    entity_type: str
    entity_id: str | None
    persist: bool
    timeout_seconds: float | None = None
    actor_role: str = ActorRole.SYSTEM.value


@dataclass(slots=True)
class TaskFallbackCommand:
    """CLI input for previewing the rule-based fallback of a task."""

    task_type: str
    inputs_json: str | None
    inputs_path: Path | None


@dataclass(slots=True)
class TaskHistoryCommand:
    """CLI input for per-entity invocation history."""

    db_path: Path | None
    entity_type: str
    entity_id: str
    task_type: str | None
    limit: int


@dataclass(slots=True)
class FlagsListCommand:
    db_path: Path | None


@dataclass(slots=True)
class FlagSetCommand:
    db_path: Path | None
    flag_key: str
    enabled: bool
    updated_by: str | None


@dataclass(slots=True)
class FeedbackSubmitCommand:
    """CLI input for a thumbs up/down on a stored invocation."""

    db_path: Path | None
    job_id: str
    actor_user_id: str
    rating: str
    reason_code: str | None
    comment: str | None


@dataclass(slots=True)
class FeedbackStatsCommand:
    db_path: Path | None
    task_type: str | None


@dataclass(slots=True)
class OpsSummaryCommand:
    """CLI input for the usage and fallback report."""

    db_path: Path | None
    hours: int


@dataclass(slots=True)
class FraudReviewBatchCommand:
    """CLI input for sequential referral fraud review."""

    db_path: Path | None
    referrals_path: Path
    actor_user_id: str
    max_batch_size: int | None
    delay_seconds: float | None


class AiCliController:
    """Coordinates task execution, audit, flag and feedback CLI operations."""

    def init_db(self, command: DbInitCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _gateway(settings) as gateway:
            flags = gateway.flag_gate.list_flags()
        return [
            f"Database ready: {settings.db_path}",
            *(f"flag {flag.flag_key}={_on_off(flag.enabled)}" for flag in flags),
        ]

    def list_tasks(self, command: TasksListCommand) -> list[str]:
        task_types = list(TASK_REGISTRY)
        if command.capability:
            task_types = task_types_for_capability(_parse_capability(command.capability))
        if command.actor:
            allowed = set(task_types_for_actor(_parse_actor(command.actor)))
            task_types = [task_type for task_type in task_types if task_type in allowed]

        lines = [f"Tasks: {len(task_types)}"]
        for task_type in task_types:
            definition = TASK_REGISTRY[task_type]
            lines.append(
                f"{task_type.value} flag={definition.flag_key} "
                f"model={definition.preferred_model} fallback_model={definition.fallback_model}"
                f"{' vision' if definition.requires_vision else ''}",
            )
            lines.append(f"  {definition.description}")
        return lines

    def run_task(self, command: TaskRunCommand) -> list[str]:
        inputs = _load_inputs(command.inputs_json, command.inputs_path)
        settings = Settings.from_env(db_path=command.db_path)
        request = TaskRequest(
            task_type=command.task_type,
            actor_user_id=command.actor_user_id,
            entity_type=resolve_entity_type(command.entity_type),
            entity_id=command.entity_id,
            inputs=inputs,
            timeout_seconds=command.timeout_seconds,
            actor_role=command.actor_role,
        )
        with _gateway(settings) as gateway:
            if command.persist:
                result, persisted = gateway.run_and_record(request)
            else:
                result, persisted = gateway.run_task(request), None

        lines = [
            f"Task {result.task_type.value}: success={result.success} "
            f"used_fallback={result.used_fallback} correlation_id={result.correlation_id}",
            f"model={result.model or '-'} attempts={result.attempts} "
            f"latency_ms={result.latency_ms} failure_class="
            f"{result.failure_class.value if result.failure_class else '-'}",
        ]
        if result.input_tokens is not None or result.output_tokens is not None:
            cost = f"{result.cost_usd:.6f}" if result.cost_usd is not None else "-"
            lines.append(
                f"input_tokens={result.input_tokens or 0} "
                f"output_tokens={result.output_tokens or 0} cost_usd={cost}",
            )
        if result.fallback_reason:
            lines.append(f"fallback_reason={result.fallback_reason}")
        if persisted is not None:
            lines.append(f"job_id={persisted.job_id}")
        lines.extend(_json_lines(result.output_json))
        return lines

    def preview_fallback(self, command: TaskFallbackCommand) -> list[str]:
        inputs = _load_inputs(command.inputs_json, command.inputs_path)
        definition = get_task_definition(command.task_type)
        problems = definition.validate_input(inputs)
        lines = [f"Fallback for {definition.task_type.value}"]
        lines.extend(f"input problem: {problem}" for problem in problems)
        lines.extend(_json_lines(definition.get_fallback(inputs)))
        return lines

    def history(self, command: TaskHistoryCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _gateway(settings) as gateway:
            rows = gateway.get_task_invocations_for_entity(
                resolve_entity_type(command.entity_type),
                command.entity_id,
                task_type=command.task_type,
                limit=command.limit,
            )
        if not rows:
            return [f"No invocations for {command.entity_type}/{command.entity_id}."]
        return [
            f"{row.created_at.isoformat()} job_id={row.job_id} task_type={row.task_type} "
            f"success={row.success} used_fallback={row.used_fallback} model={row.model or '-'} "
            f"correlation_id={row.correlation_id}"
            for row in rows
        ]

    def list_flags(self, command: FlagsListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _gateway(settings) as gateway:
            flags = gateway.flag_gate.list_flags()
        if not flags:
            return ["No feature flags stored."]
        return [
            f"{flag.flag_key}={_on_off(flag.enabled)} "
            f"updated_by={flag.updated_by or '-'} updated_at={flag.updated_at.isoformat()}"
            for flag in flags
        ]

    def set_flag(self, command: FlagSetCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _gateway(settings) as gateway:
            view = gateway.set_feature_flag(
                command.flag_key,
                command.enabled,
                updated_by=command.updated_by,
            )
        return [f"Flag {view.flag_key} is now {_on_off(view.enabled)}."]

    def submit_feedback(self, command: FeedbackSubmitCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _gateway(settings) as gateway:
            feedback_id = gateway.submit_feedback(
                job_id=command.job_id,
                actor_user_id=command.actor_user_id,
                rating=command.rating,
                reason_code=command.reason_code,
                comment=command.comment,
            )
        return [f"Feedback recorded: feedback_id={feedback_id} job_id={command.job_id}"]

    def feedback_stats(self, command: FeedbackStatsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _gateway(settings) as gateway:
            stats = gateway.feedback_stats(command.task_type)
        return [
            f"Feedback {stats.task_type or 'all tasks'}: total={stats.total} "
            f"up={stats.upvotes} down={stats.downvotes} upvote_rate={stats.upvote_rate:.1%}",
        ]

    def ops_summary(self, command: OpsSummaryCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        since = datetime.now(tz=UTC) - timedelta(hours=max(1, command.hours))
        with _gateway(settings) as gateway:
            summary = gateway.usage_summary(since=since)
        lines = [
            f"AI usage since {since.isoformat(timespec='seconds')}: total={summary.total} "
            f"fallbacks={summary.fallbacks} failures={summary.failures} "
            f"fallback_rate={summary.fallback_rate:.1%}",
            f"tokens: input={summary.input_tokens} output={summary.output_tokens} "
            f"cost_usd={summary.cost_usd:.4f}",
        ]
        for row in summary.by_task:
            latency = f"{row.avg_latency_ms:.0f}" if row.avg_latency_ms is not None else "-"
            lines.append(
                f"  {row.task_type}: total={row.total} fallbacks={row.fallbacks} "
                f"failures={row.failures} avg_latency_ms={latency} "
                f"tokens={row.input_tokens + row.output_tokens} cost_usd={row.cost_usd:.4f}",
            )
        return lines

    def fraud_review_batch(self, command: FraudReviewBatchCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        referrals = _load_referrals(command.referrals_path)
        with _gateway(settings) as gateway:
            summary = run_fraud_review_batch(
                gateway,
                referrals,
                actor_user_id=command.actor_user_id,
                delay_seconds=(
                    command.delay_seconds
                    if command.delay_seconds is not None
                    else settings.batch.delay_seconds
                ),
                max_batch_size=command.max_batch_size or settings.batch.max_batch_size,
                high_risk_threshold=settings.batch.high_risk_threshold,
            )

        if summary.skipped_reason:
            return [f"Fraud review skipped: {summary.skipped_reason}"]
        lines = [
            f"Fraud review: processed={summary.processed} successful={summary.successful} "
            f"failed={summary.failed} high_risk={summary.high_risk}",
        ]
        for item in summary.results:
            if item.success:
                lines.append(
                    f"  {item.referral_id}: risk_score={item.risk_score} "
                    f"recommendation={item.recommendation} fallback={item.used_fallback}",
                )
            else:
                lines.append(f"  {item.referral_id}: error={item.error}")
        return lines


@contextmanager
def _gateway(settings: Settings) -> Iterator[AiGateway]:
    gateway = AiGateway.from_settings(settings)
    try:
        yield gateway
    finally:
        gateway.close()


def _load_inputs(inputs_json: str | None, inputs_path: Path | None) -> dict[str, Any]:
    if inputs_json is not None and inputs_path is not None:
        raise InvalidInputError("Use either --inputs or --inputs-file, not both.")
    raw = inputs_path.read_text(encoding="utf-8") if inputs_path is not None else inputs_json
    if raw is None:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidInputError(f"Task inputs are not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise InvalidInputError("Task inputs must be a JSON object.")
    return parsed


def _load_referrals(path: Path) -> list[ReferralRecord]:
    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise InvalidInputError(f"Referral file is not valid JSON: {exc}") from exc
    if not isinstance(parsed, list):
        raise InvalidInputError("Referral file must contain a JSON array.")
    try:
        return [ReferralRecord.from_dict(item) for item in parsed]
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidInputError(f"Invalid referral record: {exc}") from exc


def _parse_capability(value: str) -> CapabilityGroup:
    for group in CapabilityGroup:
        if value in {group.value, group.name.lower()}:
            return group
    allowed = ", ".join(group.value for group in CapabilityGroup)
    raise InvalidInputError(f"Unknown capability {value!r}; expected one of {allowed}")


def _parse_actor(value: str) -> ActorRole:
    try:
        return ActorRole(value)
    except ValueError as exc:
        raise InvalidInputError(f"Unknown actor role {value!r}") from exc


def _json_lines(payload: dict[str, Any]) -> list[str]:
    return json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True).splitlines()


def _on_off(enabled: bool) -> str:
    return "on" if enabled else "off"
