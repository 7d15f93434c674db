"""Shared test fixtures."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from upkeep_ai.config import Settings
from upkeep_ai.orchestrator.backend.base import CompletionRequest, CompletionResult
from upkeep_ai.orchestrator.gateway import AiGateway
from upkeep_ai.orchestrator.models import CapabilityGroup, FeatureFlagView, TaskType

SAMPLE_INPUTS: dict[TaskType, dict[str, Any]] = {
    TaskType.FRAUD_SIGNAL_REFERRALS: {
        "referrer_id": "user-42",
        "referral_count": 12,
        "conversion_rate": 0.02,
        "cluster_data": {"ip": "ip-hash-1"},
        "cluster_matches": {"ip": 4, "device": 1},
        "time_patterns": {
            "signups_last_24h": 6,
            "signups_last_7d": 12,
            "avg_minutes_between_signups": 3.5,
        },
    },
    TaskType.PROVIDER_QUALITY_SUMMARY: {
        "provider_id": "prov-1",
        "provider_name": "Ace Plumbing",
        "current_tier": "verified",
        "metrics": {
            "rating": 4.8,
            "total_jobs": 40,
            "dispute_rate": 0.01,
            "cancellation_rate": 0.02,
            "avg_response_time_hours": 2,
            "on_time_rate": 0.95,
        },
        "recent_issues": [],
    },
    TaskType.DISPUTE_TIMELINE_SUMMARY: {
        "dispute_reason": "Leak returned after repair",
        "invoice_amount": 450.0,
        "disputed_amount": 450.0,
        "events": [
            {
                "timestamp": "2026-10-01T09:00:00Z",
                "type": "booking",
                "description": "Repair scheduled",
            },
            {
                "timestamp": "2026-10-05T15:30:00Z",
                "type": "complaint",
                "description": "Customer reports leak is back",
            },
        ],
    },
    TaskType.CRM_NEXT_BEST_ACTION: {
        "customer_id": "cust-7",
        "customer_name": "Dana",
        "as_of": "2026-10-19",
        "customer_history": {
            "member_since": "2024-01-10",
            "total_jobs": 5,
            "total_spend": 1800,
            "last_job_date": "2026-09-30",
            "avg_rating": 4.7,
        },
        "booking_context": {"service_category": "hvac", "status": "completed"},
    },
    TaskType.SPONSOR_TILE_COPY: {
        "product_name": "AquaGuard",
        "product_category": "Water Filtration",
        "key_features": ["Whole-home filtration"],
        "tone": "friendly",
    },
    TaskType.INTAKE_CLASSIFY_AND_SUMMARIZE: {
        "category": "plumbing",
        "user_description": "Water is leaking under the kitchen sink",
        "image_urls": ["https://example.com/sink.jpg"],
    },
    TaskType.INTAKE_FOLLOWUP_QUESTIONS: {
        "category": "plumbing",
        "summary": "Leak under kitchen sink",
        "existing_answers": {},
    },
    TaskType.PROVIDER_BRIEF_GENERATE: {
        "category": "electrical",
        "summary": "Outlet stopped working",
        "user_description": "Outlet in the garage is dead",
    },
    TaskType.PROVIDER_ESTIMATE_DRAFT: {
        "category": "plumbing",
        "provider_brief": "Replace leaking P-trap under kitchen sink",
    },
    TaskType.PROVIDER_MESSAGE_DRAFT: {
        "context": "scheduling",
        "customer_name": "Dana",
        "service_category": "plumbing",
        "key_points": ["Tuesday or Wednesday morning"],
    },
    TaskType.INVOICE_NARRATIVE_DRAFT: {
        "category": "plumbing",
        "scope_of_work": "Replace P-trap",
        "completed_work": ["Removed old trap", "Installed new trap", "Tested for leaks"],
        "materials_used": ["1.5in PVC P-trap"],
    },
}

VALID_FRAUD_OUTPUT: dict[str, Any] = {
    "risk_score": 72,
    "signals": [{"type": "velocity", "severity": "high", "description": "Burst of signups"}],
    "recommendation": "reject",
    "review_notes": "Many signups in one day",
}


@dataclass
class FakeBackend:
    """Scripted model backend; each call pops the next response or raises it."""

    responses: list[str | BaseException | Callable[[CompletionRequest], str]] = field(
        default_factory=list,
    )
    available: bool = True
    vision: bool = True
    name: str = "fake"
    input_tokens: int | None = 10
    output_tokens: int | None = None
    calls: list[CompletionRequest] = field(default_factory=list)
    closed: bool = False

    def is_available(self) -> bool:
        return self.available

    def supports_vision(self) -> bool:
        return self.vision

    def complete(self, request: CompletionRequest) -> CompletionResult:
        self.calls.append(request)
        if not self.responses:
            raise AssertionError("FakeBackend received an unexpected call")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        content = response(request) if callable(response) else response
        return CompletionResult(
            content=content,
            model=request.model,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
        )

    def close(self) -> None:
        self.closed = True


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryFlagStore:
    """Dict-backed flag store that counts reads."""

    def __init__(self, flags: dict[str, bool] | None = None) -> None:
        self.flags = dict(flags or {})
        self.reads = 0
        self.fail_reads = False
        self._lock = threading.Lock()

    def get_enabled(self, flag_key: str) -> bool | None:
        with self._lock:
            self.reads += 1
        if self.fail_reads:
            raise RuntimeError("flag store offline")
        return self.flags.get(flag_key)

    def upsert(
        self,
        *,
        flag_key: str,
        enabled: bool,
        updated_by: str | None,
        description: str | None = None,
    ) -> FeatureFlagView:
        self.flags[flag_key] = enabled
        return FeatureFlagView(
            flag_key=flag_key,
            enabled=enabled,
            description=description,
            updated_by=updated_by,
            updated_at=datetime.now(tz=UTC),
        )

    def list_flags(self) -> list[FeatureFlagView]:
        return [
            FeatureFlagView(
                flag_key=key,
                enabled=value,
                description=None,
                updated_by=None,
                updated_at=datetime.now(tz=UTC),
            )
            for key, value in sorted(self.flags.items())
        ]


ALL_FLAGS_ON: dict[str, bool] = {group.value: True for group in CapabilityGroup}


def as_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload)


@pytest.fixture()
def settings(tmp_path: Path, monkeypatch) -> Settings:
    """Settings pointing at a temp database with no hosted provider configured."""

    for name in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "UPKEEP_AI_FLAGS_ENABLED"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("UPKEEP_AI_PROVIDER", "none")
    return Settings.from_env(db_path=tmp_path / "upkeep-ai.db")


@pytest.fixture()
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def gateway(settings: Settings, fake_backend: FakeBackend):
    gateway = AiGateway.from_settings(settings, backend=fake_backend)
    try:
        yield gateway
    finally:
        gateway.close()
