"""Runtime configuration for the AI task orchestration layer."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

SUPPORTED_PROVIDERS: tuple[str, ...] = ("auto", "openai", "anthropic", "none")


@dataclass(slots=True)
class ModelProviderSettings:
    """Hosted model API settings."""

    provider: str = "auto"
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_api_key: str | None = None
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    anthropic_version: str = "2023-06-01"
    connect_timeout_seconds: float = 10.0
    json_mode: bool = True


@dataclass(slots=True)
class ExecutionSettings:
    """Task executor policy."""

    timeout_seconds: float = 30.0
    max_retries: int = 2
    model_override: str | None = None


@dataclass(slots=True)
class FeatureFlagSettings:
    """Feature-flag cache policy and bootstrap values."""

    cache_ttl_seconds: float = 30.0
    enabled_on_init: tuple[str, ...] = ()


@dataclass(slots=True)
class BatchSettings:
    """Sequential batch review settings."""

    delay_seconds: float = 0.1
    max_batch_size: int = 50
    high_risk_threshold: int = 61


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".upkeep_ai.db")
    model: ModelProviderSettings = field(default_factory=ModelProviderSettings)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    flags: FeatureFlagSettings = field(default_factory=FeatureFlagSettings)
    batch: BatchSettings = field(default_factory=BatchSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("UPKEEP_AI_DB_PATH", ".upkeep_ai.db")),
            model=ModelProviderSettings(
                provider=os.getenv("UPKEEP_AI_PROVIDER", "auto").strip().lower(),
                openai_api_key=os.getenv("OPENAI_API_KEY") or None,
                openai_base_url=os.getenv(
                    "UPKEEP_AI_OPENAI_BASE_URL",
                    "https://api.openai.com/v1",
                ),
                anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
                anthropic_base_url=os.getenv(
                    "UPKEEP_AI_ANTHROPIC_BASE_URL",
                    "https://api.anthropic.com/v1",
                ),
                anthropic_version=os.getenv("UPKEEP_AI_ANTHROPIC_VERSION", "2023-06-01"),
                connect_timeout_seconds=float(
                    os.getenv("UPKEEP_AI_CONNECT_TIMEOUT_SECONDS", "10.0"),
                ),
                json_mode=_env_bool("UPKEEP_AI_JSON_MODE", default=True),
            ),
            execution=ExecutionSettings(
                timeout_seconds=float(os.getenv("UPKEEP_AI_TIMEOUT_SECONDS", "30.0")),
                max_retries=int(os.getenv("UPKEEP_AI_MAX_RETRIES", "2")),
                model_override=os.getenv("UPKEEP_AI_MODEL_OVERRIDE") or None,
            ),
            flags=FeatureFlagSettings(
                cache_ttl_seconds=float(os.getenv("UPKEEP_AI_FLAG_CACHE_TTL_SECONDS", "30.0")),
                enabled_on_init=_split_csv(os.getenv("UPKEEP_AI_FLAGS_ENABLED", "")),
            ),
            batch=BatchSettings(
                delay_seconds=float(os.getenv("UPKEEP_AI_BATCH_DELAY_SECONDS", "0.1")),
                max_batch_size=int(os.getenv("UPKEEP_AI_BATCH_MAX_SIZE", "50")),
                high_risk_threshold=int(os.getenv("UPKEEP_AI_BATCH_HIGH_RISK_THRESHOLD", "61")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on values the executor cannot work with."""

        if self.model.provider not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"UPKEEP_AI_PROVIDER must be one of {', '.join(SUPPORTED_PROVIDERS)}; "
                f"got {self.model.provider!r}.",
            )
        if self.execution.timeout_seconds <= 0:
            raise ValueError("UPKEEP_AI_TIMEOUT_SECONDS must be > 0.")
        if self.execution.max_retries < 0:
            raise ValueError("UPKEEP_AI_MAX_RETRIES must be >= 0.")
        if self.flags.cache_ttl_seconds < 0:
            raise ValueError("UPKEEP_AI_FLAG_CACHE_TTL_SECONDS must be >= 0.")
        if self.batch.delay_seconds < 0:
            raise ValueError("UPKEEP_AI_BATCH_DELAY_SECONDS must be >= 0.")
        if self.batch.max_batch_size <= 0:
            raise ValueError("UPKEEP_AI_BATCH_MAX_SIZE must be a positive integer.")
        if not 0 <= self.batch.high_risk_threshold <= 100:  # noqa: PLR2004
            raise ValueError("UPKEEP_AI_BATCH_HIGH_RISK_THRESHOLD must be between 0 and 100.")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")


def _split_csv(raw: str) -> tuple[str, ...]:
    values: list[str] = []
    seen: set[str] = set()
    for item in raw.split(","):
        value = item.strip()
        if not value or value in seen:
            continue
        seen.add(value)
        values.append(value)
    return tuple(values)
