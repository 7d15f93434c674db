from __future__ import annotations

import json
import re
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from upkeep_ai import __version__
from upkeep_ai.main import upkeep_ai

pytestmark = [
    allure.epic("AI Orchestration"),
    allure.feature("CLI"),
]

_FRAUD_INPUTS = {
    "referrer_id": "user-1",
    "time_patterns": {"signups_last_24h": 50, "signups_last_7d": 50},
}


@pytest.fixture()
def cli_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "UPKEEP_AI_FLAGS_ENABLED"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("UPKEEP_AI_PROVIDER", "none")


def _invoke(*args: str):
    return CliRunner().invoke(upkeep_ai, list(args))


def _json_tail(output: str) -> dict:
    return json.loads(output[output.index("{") :])


def test_version() -> None:
    result = _invoke("--version")

    assert result.exit_code == 0
    assert __version__ in result.output


def test_db_init_seeds_disabled_flags(tmp_path: Path, cli_env: None) -> None:
    db_path = tmp_path / "cli.db"

    result = _invoke("db", "init", "--db-path", str(db_path))

    assert result.exit_code == 0, result.output
    assert f"Database ready: {db_path}" in result.output
    assert "flag ai_admin_triage_enabled=off" in result.output
    assert len(re.findall(r"^flag ", result.output, flags=re.MULTILINE)) == 5


def test_db_init_enables_flags_from_env(
    tmp_path: Path,
    cli_env: None,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("UPKEEP_AI_FLAGS_ENABLED", "ai_intake_enabled")

    result = _invoke("db", "init", "--db-path", str(tmp_path / "cli.db"))

    assert "flag ai_intake_enabled=on" in result.output
    assert "flag ai_crm_copilot_enabled=off" in result.output


def test_flags_set_and_list(tmp_path: Path, cli_env: None) -> None:
    db_path = str(tmp_path / "cli.db")

    set_result = _invoke("flags", "set", "--db-path", db_path, "ai_sponsor_copy_enabled", "on")
    list_result = _invoke("flags", "list", "--db-path", db_path)

    assert set_result.exit_code == 0, set_result.output
    assert "Flag ai_sponsor_copy_enabled is now on." in set_result.output
    assert "ai_sponsor_copy_enabled=on" in list_result.output
    assert "ai_intake_enabled=off" in list_result.output


def test_tasks_list_filters(cli_env: None) -> None:
    everything = _invoke("tasks", "list")
    provider_only = _invoke("tasks", "list", "--actor", "provider")
    sponsor = _invoke("tasks", "list", "--capability", "ai_sponsor_copy_enabled")

    assert everything.output.startswith("Tasks: 11")
    assert provider_only.output.startswith("Tasks: 4")
    assert "SPONSOR_TILE_COPY flag=ai_sponsor_copy_enabled" in sponsor.output
    assert sponsor.output.startswith("Tasks: 1")


def test_tasks_run_serves_fallback_and_records_job(tmp_path: Path, cli_env: None) -> None:
    db_path = str(tmp_path / "cli.db")
    _invoke("flags", "set", "--db-path", db_path, "ai_admin_triage_enabled", "on")

    result = _invoke(
        "tasks",
        "run",
        "--db-path",
        db_path,
        "FRAUD_SIGNAL_REFERRALS",
        "--inputs",
        json.dumps(_FRAUD_INPUTS),
        "--entity-type",
        "referral",
        "--entity-id",
        "ref-1",
    )

    assert result.exit_code == 0, result.output
    assert "success=True used_fallback=True" in result.output
    assert "failure_class=provider_unavailable" in result.output
    job_id = re.search(r"job_id=(\S+)", result.output).group(1)
    assert _json_tail(result.output)["recommendation"] == "reject"

    history = _invoke("tasks", "history", "--db-path", db_path, "referral", "ref-1")
    assert f"job_id={job_id}" in history.output

    feedback = _invoke("feedback", "submit", "--db-path", db_path, job_id, "up")
    assert feedback.exit_code == 0, feedback.output
    assert "Feedback recorded" in feedback.output

    stats = _invoke("feedback", "stats", "--db-path", db_path)
    assert "total=1 up=1 down=0" in stats.output

    summary = _invoke("ops", "summary", "--db-path", db_path)
    assert "total=1 fallbacks=1 failures=0" in summary.output
    assert "FRAUD_SIGNAL_REFERRALS: total=1" in summary.output


def test_tasks_run_without_persist(tmp_path: Path, cli_env: None) -> None:
    result = _invoke(
        "tasks",
        "run",
        "--db-path",
        str(tmp_path / "cli.db"),
        "PROVIDER_ESTIMATE_DRAFT",
        "--inputs",
        json.dumps({"category": "plumbing", "provider_brief": "Fix leak"}),
        "--no-persist",
    )

    assert result.exit_code == 0, result.output
    assert "failure_class=capability_disabled" in result.output
    assert "job_id=" not in result.output


def test_tasks_run_reads_inputs_file(tmp_path: Path, cli_env: None) -> None:
    inputs_path = tmp_path / "inputs.json"
    inputs_path.write_text(json.dumps(_FRAUD_INPUTS), encoding="utf-8")

    result = _invoke(
        "tasks",
        "run",
        "--db-path",
        str(tmp_path / "cli.db"),
        "FRAUD_SIGNAL_REFERRALS",
        "--inputs-file",
        str(inputs_path),
    )

    assert result.exit_code == 0, result.output
    assert _json_tail(result.output)["risk_score"] == 70


@pytest.mark.parametrize(
    ("args", "message"),
    [
        (["tasks", "run", "NOT_A_TASK"], "Unknown AI task type"),
        (["tasks", "run", "FRAUD_SIGNAL_REFERRALS", "--inputs", "[1]"], "JSON object"),
        (["tasks", "run", "FRAUD_SIGNAL_REFERRALS", "--entity-type", "planet"], "planet"),
        (["feedback", "submit", "missing-job", "up"], "not found"),
    ],
)
def test_errors_exit_non_zero(
    tmp_path: Path,
    cli_env: None,
    args: list[str],
    message: str,
) -> None:
    result = _invoke(*args[:2], "--db-path", str(tmp_path / "cli.db"), *args[2:])

    assert result.exit_code != 0
    assert message in result.output


def test_tasks_fallback_preview_needs_no_database(cli_env: None) -> None:
    result = _invoke(
        "tasks",
        "fallback",
        "PROVIDER_MESSAGE_DRAFT",
        "--inputs",
        json.dumps({"context": "completion", "customer_name": "Ana", "service_category": "hvac"}),
    )

    assert result.exit_code == 0, result.output
    assert result.output.startswith("Fallback for PROVIDER_MESSAGE_DRAFT")
    assert "input problem" not in result.output
    assert _json_tail(result.output)["message"].startswith("Hi Ana, your hvac service")


def test_fraud_review_batch_command(tmp_path: Path, cli_env: None) -> None:
    db_path = str(tmp_path / "cli.db")
    referrals_path = tmp_path / "referrals.json"
    referrals_path.write_text(
        json.dumps(
            [
                {
                    "referral_id": "ref-1",
                    "referrer_id": "user-1",
                    "created_at": "2026-10-19T10:00:00Z",
                },
                {
                    "referral_id": "ref-2",
                    "referrer_id": "user-1",
                    "created_at": "2026-10-19T10:01:00Z",
                },
            ],
        ),
        encoding="utf-8",
    )

    skipped = _invoke("fraud-review", "batch", "--db-path", db_path, str(referrals_path))
    _invoke("flags", "set", "--db-path", db_path, "ai_admin_triage_enabled", "on")
    ran = _invoke(
        "fraud-review",
        "batch",
        "--db-path",
        db_path,
        str(referrals_path),
        "--delay",
        "0",
    )

    assert "Fraud review skipped: AI admin triage is disabled" in skipped.output
    assert ran.exit_code == 0, ran.output
    assert "processed=2 successful=2 failed=0" in ran.output
    assert "ref-1: risk_score=" in ran.output


def test_tasks_run_refuses_disallowed_role(tmp_path: Path, cli_env: None) -> None:
    db_path = str(tmp_path / "cli.db")

    result = _invoke(
        "tasks",
        "run",
        "--db-path",
        db_path,
        "SPONSOR_TILE_COPY",
        "--role",
        "customer",
    )

    assert result.exit_code == 0, result.output
    assert "success=False used_fallback=False" in result.output
    assert "failure_class=actor_not_allowed" in result.output
    assert "Actor role customer may not run SPONSOR_TILE_COPY" in result.output
    summary = _invoke("ops", "summary", "--db-path", db_path)
    assert "total=1 fallbacks=0 failures=1" in summary.output
    assert "tokens: input=0 output=0 cost_usd=0.0000" in summary.output
