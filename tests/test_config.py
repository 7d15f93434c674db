from __future__ import annotations

from pathlib import Path

import allure
import pytest

from upkeep_ai.config import (
    BatchSettings,
    ExecutionSettings,
    FeatureFlagSettings,
    ModelProviderSettings,
    Settings,
)

pytestmark = [
    allure.epic("AI Orchestration"),
    allure.feature("Configuration"),
]

_ENV_NAMES = (
    "UPKEEP_AI_DB_PATH",
    "UPKEEP_AI_PROVIDER",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "UPKEEP_AI_JSON_MODE",
    "UPKEEP_AI_TIMEOUT_SECONDS",
    "UPKEEP_AI_MAX_RETRIES",
    "UPKEEP_AI_MODEL_OVERRIDE",
    "UPKEEP_AI_FLAG_CACHE_TTL_SECONDS",
    "UPKEEP_AI_FLAGS_ENABLED",
    "UPKEEP_AI_BATCH_DELAY_SECONDS",
    "UPKEEP_AI_BATCH_MAX_SIZE",
    "UPKEEP_AI_BATCH_HIGH_RISK_THRESHOLD",
)


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env: pytest.MonkeyPatch) -> None:
    settings = Settings.from_env()

    assert settings.db_path == Path(".upkeep_ai.db")
    assert settings.model.provider == "auto"
    assert settings.model.openai_api_key is None
    assert settings.model.json_mode is True
    assert settings.execution.timeout_seconds == 30.0
    assert settings.execution.max_retries == 2
    assert settings.flags.cache_ttl_seconds == 30.0
    assert settings.flags.enabled_on_init == ()
    assert settings.batch.max_batch_size == 50
    settings.validate()


def test_environment_overrides(clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
    clean_env.setenv("UPKEEP_AI_DB_PATH", str(tmp_path / "env.db"))
    clean_env.setenv("UPKEEP_AI_PROVIDER", " Anthropic ")
    clean_env.setenv("ANTHROPIC_API_KEY", "ak-test")
    clean_env.setenv("UPKEEP_AI_JSON_MODE", "off")
    clean_env.setenv("UPKEEP_AI_MAX_RETRIES", "0")
    clean_env.setenv("UPKEEP_AI_MODEL_OVERRIDE", "claude-sonnet-4-5-20250929")
    clean_env.setenv(
        "UPKEEP_AI_FLAGS_ENABLED",
        "ai_intake_enabled, ai_crm_copilot_enabled,,ai_intake_enabled",
    )

    settings = Settings.from_env()

    assert settings.db_path == tmp_path / "env.db"
    assert settings.model.provider == "anthropic"
    assert settings.model.anthropic_api_key == "ak-test"
    assert settings.model.json_mode is False
    assert settings.execution.max_retries == 0
    assert settings.execution.model_override == "claude-sonnet-4-5-20250929"
    assert settings.flags.enabled_on_init == ("ai_intake_enabled", "ai_crm_copilot_enabled")


def test_explicit_db_path_wins(clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
    clean_env.setenv("UPKEEP_AI_DB_PATH", str(tmp_path / "env.db"))

    assert Settings.from_env(db_path=tmp_path / "cli.db").db_path == tmp_path / "cli.db"


def test_invalid_boolean_is_rejected(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("UPKEEP_AI_JSON_MODE", "maybe")

    with pytest.raises(ValueError, match="UPKEEP_AI_JSON_MODE"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(model=ModelProviderSettings(provider="gemini")), "UPKEEP_AI_PROVIDER"),
        (Settings(execution=ExecutionSettings(timeout_seconds=0)), "UPKEEP_AI_TIMEOUT_SECONDS"),
        (Settings(execution=ExecutionSettings(max_retries=-1)), "UPKEEP_AI_MAX_RETRIES"),
        (
            Settings(flags=FeatureFlagSettings(cache_ttl_seconds=-1)),
            "UPKEEP_AI_FLAG_CACHE_TTL_SECONDS",
        ),
        (Settings(batch=BatchSettings(delay_seconds=-0.1)), "UPKEEP_AI_BATCH_DELAY_SECONDS"),
        (Settings(batch=BatchSettings(max_batch_size=0)), "UPKEEP_AI_BATCH_MAX_SIZE"),
        (
            Settings(batch=BatchSettings(high_risk_threshold=101)),
            "UPKEEP_AI_BATCH_HIGH_RISK_THRESHOLD",
        ),
    ],
)
def test_validate_rejects_unusable_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()
