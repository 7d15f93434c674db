"""CLI entrypoint for upkeep-ai."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from upkeep_ai import __version__
from upkeep_ai.orchestrator.controllers import (
    AiCliController,
    DbInitCommand,
    FeedbackStatsCommand,
    FeedbackSubmitCommand,
    FlagSetCommand,
    FlagsListCommand,
    FraudReviewBatchCommand,
    OpsSummaryCommand,
    TaskFallbackCommand,
    TaskHistoryCommand,
    TaskRunCommand,
    TasksListCommand,
)
from upkeep_ai.orchestrator.errors import AiOrchestrationError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = AiCliController()
CommandT = TypeVar("CommandT")

_DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path. Defaults to `UPKEEP_AI_DB_PATH` or `.upkeep_ai.db`.",
)


@click.group()
@click.version_option(version=__version__, prog_name="upkeep-ai")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def upkeep_ai(log_level: str) -> None:
    """AI task orchestration for the home-maintenance marketplace.

    Every task returns structured output: model output when it validates,
    a rule-based fallback otherwise.
    """

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@upkeep_ai.group()
def db() -> None:
    """Database commands."""


@db.command("init")
@_DB_PATH_OPTION
def db_init(db_path: Path | None) -> None:
    """Apply migrations and seed capability flags (disabled unless `UPKEEP_AI_FLAGS_ENABLED`)."""

    _emit(CONTROLLER.init_db, DbInitCommand(db_path=db_path))


@upkeep_ai.group()
def tasks() -> None:
    """Task catalogue, execution and history."""


@tasks.command("list")
@click.option("--capability", default=None, help="Filter by capability flag key.")
@click.option(
    "--actor",
    type=click.Choice(["customer", "provider", "admin", "system"]),
    default=None,
    help="Only tasks this actor role may invoke.",
)
def tasks_list(capability: str | None, actor: str | None) -> None:
    """List registered task types."""

    _emit(CONTROLLER.list_tasks, TasksListCommand(capability=capability, actor=actor))


@tasks.command("run")
@_DB_PATH_OPTION
@click.argument("task_type")
@click.option("--inputs", "inputs_json", default=None, help="Task inputs as a JSON object.")
@click.option(
    "--inputs-file",
    "inputs_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="File with task inputs as a JSON object.",
)
@click.option("--actor", "actor_user_id", default="system", show_default=True)
@click.option(
    "--role",
    "actor_role",
    type=click.Choice(["customer", "provider", "admin", "system"]),
    default="system",
    show_default=True,
    help="Role the actor runs the task as; tasks refuse roles they do not allow.",
)
@click.option("--entity-type", default="none", show_default=True)
@click.option("--entity-id", default=None)
@click.option(
    "--persist/--no-persist",
    default=True,
    show_default=True,
    help="Record the result in the audit trail.",
)
@click.option("--timeout", "timeout_seconds", type=click.FloatRange(min=0.1), default=None)
def tasks_run(  # noqa: PLR0913
    db_path: Path | None,
    task_type: str,
    inputs_json: str | None,
    inputs_path: Path | None,
    actor_user_id: str,
    actor_role: str,
    entity_type: str,
    entity_id: str | None,
    persist: bool,
    timeout_seconds: float | None,
) -> None:
    """Run one task and print its output."""

    _emit(
        CONTROLLER.run_task,
        TaskRunCommand(
            db_path=db_path,
            task_type=task_type,
            inputs_json=inputs_json,
            inputs_path=inputs_path,
            actor_user_id=actor_user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            persist=persist,
            timeout_seconds=timeout_seconds,
            actor_role=actor_role,
        ),
    )


@tasks.command("fallback")
@click.argument("task_type")
@click.option("--inputs", "inputs_json", default=None, help="Task inputs as a JSON object.")
@click.option(
    "--inputs-file",
    "inputs_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
)
def tasks_fallback(task_type: str, inputs_json: str | None, inputs_path: Path | None) -> None:
    """Print the rule-based fallback for the given inputs without calling a model."""

    _emit(
        CONTROLLER.preview_fallback,
        TaskFallbackCommand(task_type=task_type, inputs_json=inputs_json, inputs_path=inputs_path),
    )


@tasks.command("history")
@_DB_PATH_OPTION
@click.argument("entity_type")
@click.argument("entity_id")
@click.option("--task-type", default=None)
@click.option("--limit", type=click.IntRange(min=1, max=500), default=10, show_default=True)
def tasks_history(
    db_path: Path | None,
    entity_type: str,
    entity_id: str,
    task_type: str | None,
    limit: int,
) -> None:
    """Show invocations recorded for one entity, newest first."""

    _emit(
        CONTROLLER.history,
        TaskHistoryCommand(
            db_path=db_path,
            entity_type=entity_type,
            entity_id=entity_id,
            task_type=task_type,
            limit=limit,
        ),
    )


@upkeep_ai.group()
def flags() -> None:
    """Capability feature flags."""


@flags.command("list")
@_DB_PATH_OPTION
def flags_list(db_path: Path | None) -> None:
    """Show stored flags."""

    _emit(CONTROLLER.list_flags, FlagsListCommand(db_path=db_path))


@flags.command("set")
@_DB_PATH_OPTION
@click.argument("flag_key")
@click.argument("state", type=click.Choice(["on", "off"]))
@click.option("--by", "updated_by", default=None, help="Who changed the flag.")
def flags_set(db_path: Path | None, flag_key: str, state: str, updated_by: str | None) -> None:
    """Turn a capability on or off."""

    _emit(
        CONTROLLER.set_flag,
        FlagSetCommand(
            db_path=db_path,
            flag_key=flag_key,
            enabled=state == "on",
            updated_by=updated_by,
        ),
    )


@upkeep_ai.group()
def feedback() -> None:
    """Human feedback on task outputs."""


@feedback.command("submit")
@_DB_PATH_OPTION
@click.argument("job_id")
@click.argument("rating")
@click.option("--actor", "actor_user_id", default="system", show_default=True)
@click.option("--reason", "reason_code", default=None)
@click.option("--comment", default=None)
def feedback_submit(  # noqa: PLR0913
    db_path: Path | None,
    job_id: str,
    rating: str,
    actor_user_id: str,
    reason_code: str | None,
    comment: str | None,
) -> None:
    """Record a thumbs `up` or `down` for a stored invocation."""

    _emit(
        CONTROLLER.submit_feedback,
        FeedbackSubmitCommand(
            db_path=db_path,
            job_id=job_id,
            actor_user_id=actor_user_id,
            rating=rating,
            reason_code=reason_code,
            comment=comment,
        ),
    )


@feedback.command("stats")
@_DB_PATH_OPTION
@click.option("--task-type", default=None)
def feedback_stats(db_path: Path | None, task_type: str | None) -> None:
    """Show up/down counts."""

    _emit(CONTROLLER.feedback_stats, FeedbackStatsCommand(db_path=db_path, task_type=task_type))


@upkeep_ai.group()
def ops() -> None:
    """Operator reports."""


@ops.command("summary")
@_DB_PATH_OPTION
@click.option("--hours", type=click.IntRange(min=1), default=24, show_default=True)
def ops_summary(db_path: Path | None, hours: int) -> None:
    """Invocation, fallback and failure counts per task."""

    _emit(CONTROLLER.ops_summary, OpsSummaryCommand(db_path=db_path, hours=hours))


@upkeep_ai.group("fraud-review")
def fraud_review() -> None:
    """Referral fraud review."""


@fraud_review.command("batch")
@_DB_PATH_OPTION
@click.argument(
    "referrals_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
)
@click.option("--actor", "actor_user_id", default="system", show_default=True)
@click.option("--max-batch-size", type=click.IntRange(min=1), default=None)
@click.option("--delay", "delay_seconds", type=click.FloatRange(min=0), default=None)
def fraud_review_batch(
    db_path: Path | None,
    referrals_path: Path,
    actor_user_id: str,
    max_batch_size: int | None,
    delay_seconds: float | None,
) -> None:
    """Score referrals from a JSON array file, one at a time."""

    _emit(
        CONTROLLER.fraud_review_batch,
        FraudReviewBatchCommand(
            db_path=db_path,
            referrals_path=referrals_path,
            actor_user_id=actor_user_id,
            max_batch_size=max_batch_size,
            delay_seconds=delay_seconds,
        ),
    )


def _emit(handler: Callable[[CommandT], list[str]], command: CommandT) -> None:
    try:
        lines = handler(command)
    except (AiOrchestrationError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    upkeep_ai()
