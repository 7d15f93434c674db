from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure
import pytest
from conftest import VALID_FRAUD_OUTPUT, FakeBackend, as_json

from upkeep_ai.orchestrator.batch import (
    ReferralRecord,
    build_fraud_signal_input,
    email_domain_hash,
    run_fraud_review_batch,
)
from upkeep_ai.orchestrator.models import CapabilityGroup, EntityType, TaskType

pytestmark = [
    allure.epic("AI Orchestration"),
    allure.feature("Fraud review batch"),
]

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _referral(index: int, *, referrer_id: str = "user-1", minutes_ago: int = 0, **extra):
    return ReferralRecord(
        referral_id=f"ref-{index}",
        referrer_id=referrer_id,
        created_at=NOW - timedelta(minutes=minutes_ago),
        **extra,
    )


def test_from_dict_parses_iso_timestamps() -> None:
    record = ReferralRecord.from_dict(
        {
            "referral_id": 7,
            "referrer_id": "user-1",
            "created_at": "2026-10-19T10:00:00Z",
            "referee_email": "a@example.com",
            "converted": True,
        },
    )

    assert record.referral_id == "7"
    assert record.created_at == datetime(2026, 10, 19, 10, 0, tzinfo=UTC)
    assert record.converted is True


def test_from_dict_requires_created_at() -> None:
    with pytest.raises(ValueError, match="created_at"):
        ReferralRecord.from_dict({"referral_id": "r", "referrer_id": "u"})


def test_email_domain_hash_hides_address() -> None:
    digest = email_domain_hash("Someone@Example.com")

    assert digest == email_domain_hash("other@example.com")
    assert len(digest) == 12
    assert "example" not in digest
    assert email_domain_hash(None) == ""
    assert email_domain_hash("not-an-email") == ""


def test_build_fraud_signal_input_aggregates_history() -> None:
    history = [
        _referral(1, minutes_ago=4, ip_hash="ip-a", converted=True),
        _referral(2, minutes_ago=2, ip_hash="ip-a"),
        _referral(3, minutes_ago=0, ip_hash="ip-a", device_hash="dev-1"),
        _referral(4, minutes_ago=60 * 24 * 3, ip_hash="ip-b"),
        _referral(5, minutes_ago=60 * 24 * 10),
    ]

    inputs = build_fraud_signal_input(history[2], history, now=NOW)

    assert inputs["referrer_id"] == "user-1"
    assert inputs["referral_count"] == 5
    assert inputs["conversion_rate"] == pytest.approx(0.2)
    assert inputs["cluster_data"] == {"ip": "ip-a", "device": "dev-1"}
    assert inputs["cluster_matches"] == {"ip": 3, "device": 1}
    assert inputs["time_patterns"]["signups_last_24h"] == 3
    assert inputs["time_patterns"]["signups_last_7d"] == 4
    assert inputs["time_patterns"]["avg_minutes_between_signups"] > 0


def test_batch_skips_when_admin_triage_disabled(gateway, fake_backend: FakeBackend) -> None:
    summary = run_fraud_review_batch(gateway, [_referral(1)], now=NOW, sleep=lambda _: None)

    assert summary.skipped_reason == "AI admin triage is disabled"
    assert summary.processed == 0
    assert fake_backend.calls == []


def test_batch_scores_and_records_each_referral(gateway, fake_backend: FakeBackend) -> None:
    gateway.set_feature_flag(CapabilityGroup.ADMIN_TRIAGE, True, updated_by="ops")
    fake_backend.responses.extend(
        [
            as_json(VALID_FRAUD_OUTPUT),
            as_json(dict(VALID_FRAUD_OUTPUT, risk_score=5, recommendation="approve")),
        ],
    )
    sleeps: list[float] = []
    referrals = [_referral(1, minutes_ago=5), _referral(2, referrer_id="user-2")]

    summary = run_fraud_review_batch(
        gateway,
        referrals,
        delay_seconds=0.25,
        now=NOW,
        sleep=sleeps.append,
    )

    assert (summary.processed, summary.successful, summary.failed) == (2, 2, 0)
    assert summary.high_risk == 1
    assert [item.risk_score for item in summary.results] == [72, 5]
    assert sleeps == [0.25]
    history = gateway.get_task_invocations_for_entity(
        EntityType.REFERRAL,
        "ref-1",
        task_type=TaskType.FRAUD_SIGNAL_REFERRALS,
    )
    assert [view.job_id for view in history] == [summary.results[0].job_id]


def test_batch_uses_fallback_when_model_fails(gateway, fake_backend: FakeBackend) -> None:
    gateway.set_feature_flag(CapabilityGroup.ADMIN_TRIAGE, True)
    fake_backend.responses.extend([RuntimeError("boom")] * 3)

    summary = run_fraud_review_batch(gateway, [_referral(1)], now=NOW, sleep=lambda _: None)

    assert summary.successful == 1
    assert summary.results[0].used_fallback is True
    assert summary.results[0].recommendation == "approve"


def test_batch_honours_max_size_and_isolates_item_errors(
    gateway,
    fake_backend: FakeBackend,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    gateway.set_feature_flag(CapabilityGroup.ADMIN_TRIAGE, True)
    fake_backend.responses.append(as_json(VALID_FRAUD_OUTPUT))
    original = gateway.run_and_record
    calls = {"count": 0}

    def _flaky(request):
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("db locked")
        return original(request)

    monkeypatch.setattr(gateway, "run_and_record", _flaky)
    referrals = [_referral(index) for index in range(1, 5)]

    summary = run_fraud_review_batch(
        gateway,
        referrals,
        max_batch_size=2,
        now=NOW,
        sleep=lambda _: None,
    )

    assert summary.processed == 2
    assert summary.failed == 1
    assert summary.results[0].error == "db locked"
    assert summary.results[1].success is True
