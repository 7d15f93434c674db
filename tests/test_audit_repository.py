from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure
import pytest
from conftest import SAMPLE_INPUTS, VALID_FRAUD_OUTPUT, FakeBackend, as_json

from upkeep_ai.orchestrator.audit import TaskAuditService
from upkeep_ai.orchestrator.errors import InvalidInputError, PersistenceError
from upkeep_ai.orchestrator.models import (
    CapabilityGroup,
    EntityType,
    FailureClass,
    FeedbackRating,
    FeedbackWrite,
    PolicyEvent,
    PolicyEventType,
    TaskRequest,
    TaskResult,
    TaskType,
)
from upkeep_ai.orchestrator.registry import resolve_entity_type
from upkeep_ai.orchestrator.repository import AiRepository, compute_input_hash
from upkeep_ai.storage.common import utc_now

pytestmark = [
    allure.epic("AI Orchestration"),
    allure.feature("Audit trail"),
]


def _result(task_type: TaskType = TaskType.FRAUD_SIGNAL_REFERRALS, **overrides) -> TaskResult:
    values = {
        "success": True,
        "used_fallback": True,
        "output_json": {"risk_score": 10},
        "correlation_id": "corr-1",
        "task_type": task_type,
        "latency_ms": 42,
        "attempts": 0,
        "failure_class": FailureClass.CAPABILITY_DISABLED,
        "fallback_reason": "Feature flag is disabled",
        "policy_events": [
            PolicyEvent(PolicyEventType.CAPABILITY_DISABLED, {"flag_key": "x"}),
        ],
    }
    values.update(overrides)
    return TaskResult(**values)


@pytest.fixture()
def audit(tmp_path):
    repository = AiRepository(tmp_path / "audit.db")
    repository.init_schema()
    try:
        yield TaskAuditService(repository)
    finally:
        repository.close()


def _persist(audit: TaskAuditService, *, entity_id: str = "ref-1", **result_overrides):
    result = _result(**result_overrides)
    return audit.persist_task_response(
        task_type=result.task_type,
        actor_user_id="admin-1",
        entity_type=EntityType.REFERRAL,
        entity_id=entity_id,
        inputs={"referrer_id": "user-1", "nested": {"b": 2, "a": 1}},
        response=result,
    )


def test_persist_and_read_back(audit: TaskAuditService) -> None:
    persisted = _persist(audit)

    view = audit.get_task_invocation(persisted.job_id)

    assert view is not None
    assert view.correlation_id == "corr-1" == persisted.correlation_id
    assert view.task_type == TaskType.FRAUD_SIGNAL_REFERRALS.value
    assert view.entity_type == "referral"
    assert view.inputs == {"referrer_id": "user-1", "nested": {"b": 2, "a": 1}}
    assert view.output_json == {"risk_score": 10}
    assert view.used_fallback is True
    assert view.success is True
    assert view.failure_class is FailureClass.CAPABILITY_DISABLED
    assert view.latency_ms == 42
    assert view.policy_events == [{"type": "CAPABILITY_DISABLED", "details": {"flag_key": "x"}}]
    assert view.created_at.tzinfo is not None


def test_each_persist_creates_a_new_job(audit: TaskAuditService) -> None:
    first = _persist(audit)
    second = _persist(audit)

    assert first.job_id != second.job_id
    assert first.correlation_id == second.correlation_id


def test_input_hash_is_key_order_independent() -> None:
    assert compute_input_hash({"a": 1, "b": [1, 2]}) == compute_input_hash({"b": [1, 2], "a": 1})
    assert compute_input_hash({"a": 1}) != compute_input_hash({"a": 2})


def test_task_type_mismatch_is_rejected(audit: TaskAuditService) -> None:
    with pytest.raises(ValueError, match="mismatch"):
        audit.persist_task_response(
            task_type=TaskType.SPONSOR_TILE_COPY,
            actor_user_id="admin-1",
            entity_type=EntityType.SPONSOR,
            entity_id="s-1",
            inputs={},
            response=_result(),
        )


def test_unknown_job_returns_none(audit: TaskAuditService) -> None:
    assert audit.get_task_invocation("missing") is None


def test_entity_history_newest_first_and_filtered(audit: TaskAuditService) -> None:
    older = _persist(audit, correlation_id="c-old")
    newer = _persist(audit, correlation_id="c-new")
    _persist(audit, entity_id="ref-2")

    history = audit.get_task_invocations_for_entity(EntityType.REFERRAL, "ref-1")

    assert [view.job_id for view in history] == [newer.job_id, older.job_id]
    assert audit.get_task_invocations_for_entity("referral", "ref-1", limit=1)[0].job_id == (
        newer.job_id
    )
    assert (
        audit.get_task_invocations_for_entity(
            "referral",
            "ref-1",
            task_type=TaskType.SPONSOR_TILE_COPY,
        )
        == []
    )


def test_list_task_invocations_filters(audit: TaskAuditService) -> None:
    fraud = _persist(audit, correlation_id="c-fraud")
    sponsor = _persist(audit, task_type=TaskType.SPONSOR_TILE_COPY, correlation_id="c-sponsor")

    everything = audit.list_task_invocations()
    by_task = audit.list_task_invocations(task_type="SPONSOR_TILE_COPY")
    by_correlation = audit.list_task_invocations(correlation_id="c-fraud")

    assert [view.job_id for view in everything] == [sponsor.job_id, fraud.job_id]
    assert [view.job_id for view in by_task] == [sponsor.job_id]
    assert [view.job_id for view in by_correlation] == [fraud.job_id]
    assert audit.list_task_invocations(since=utc_now() + timedelta(minutes=1)) == []
    assert len(audit.list_task_invocations(limit=1)) == 1


def test_usage_summary_counts(audit: TaskAuditService) -> None:
    since = utc_now() - timedelta(minutes=1)
    _persist(audit)
    _persist(audit, used_fallback=False, failure_class=None, policy_events=[], latency_ms=10)
    _persist(
        audit,
        task_type=TaskType.SPONSOR_TILE_COPY,
        success=False,
        used_fallback=False,
        failure_class=FailureClass.FALLBACK_FAILED,
    )

    summary = audit.usage_summary(since=since)

    assert summary.total == 3
    assert summary.fallbacks == 1
    assert summary.failures == 1
    by_task = {row.task_type: row for row in summary.by_task}
    assert by_task["FRAUD_SIGNAL_REFERRALS"].total == 2
    assert by_task["FRAUD_SIGNAL_REFERRALS"].avg_latency_ms == pytest.approx(26.0)
    assert by_task["SPONSOR_TILE_COPY"].failures == 1
    assert audit.usage_summary(since=utc_now() + timedelta(minutes=1)).total == 0


def test_best_effort_swallows_storage_errors(audit: TaskAuditService, monkeypatch) -> None:
    def _fail(_payload):
        raise PersistenceError("disk full")

    monkeypatch.setattr(audit._repository, "insert_task_invocation", _fail)

    persisted = audit.persist_task_response_best_effort(
        task_type=TaskType.FRAUD_SIGNAL_REFERRALS,
        actor_user_id="admin-1",
        entity_type=EntityType.REFERRAL,
        entity_id="ref-1",
        inputs={},
        response=_result(),
    )

    assert persisted is None


def test_strict_persist_propagates_storage_errors(audit: TaskAuditService, monkeypatch) -> None:
    def _fail(_payload):
        raise PersistenceError("disk full")

    monkeypatch.setattr(audit._repository, "insert_task_invocation", _fail)

    with pytest.raises(PersistenceError):
        _persist(audit)


def test_gateway_run_and_record(gateway, fake_backend: FakeBackend) -> None:
    gateway.set_feature_flag(CapabilityGroup.ADMIN_TRIAGE, True, updated_by="admin-1")
    fake_backend.responses.append(as_json(VALID_FRAUD_OUTPUT))
    inputs = SAMPLE_INPUTS[TaskType.FRAUD_SIGNAL_REFERRALS]

    result, persisted = gateway.run_and_record(
        TaskRequest(
            task_type=TaskType.FRAUD_SIGNAL_REFERRALS,
            actor_user_id="admin-1",
            entity_type=EntityType.REFERRAL,
            entity_id="ref-9",
            inputs=inputs,
        ),
    )

    assert result.used_fallback is False
    assert persisted is not None
    assert persisted.correlation_id == result.correlation_id
    history = gateway.get_task_invocations_for_entity(EntityType.REFERRAL, "ref-9")
    assert [view.job_id for view in history] == [persisted.job_id]
    assert history[0].input_hash == compute_input_hash(inputs)
    assert history[0].model == "gpt-4o"


@pytest.mark.parametrize("entity_type", ["message_thread", "property", EntityType.BOOKING])
def test_every_entity_type_persists(audit: TaskAuditService, entity_type) -> None:
    persisted = audit.persist_task_response(
        task_type=TaskType.FRAUD_SIGNAL_REFERRALS,
        actor_user_id="admin-1",
        entity_type=entity_type,
        entity_id="e-1",
        inputs={},
        response=_result(),
    )

    view = audit.get_task_invocation(persisted.job_id)
    assert view is not None
    assert view.entity_type == resolve_entity_type(entity_type).value


def test_unknown_entity_type_is_rejected(audit: TaskAuditService) -> None:
    with pytest.raises(InvalidInputError, match="planet"):
        resolve_entity_type("planet")
    with pytest.raises(InvalidInputError, match="planet"):
        audit.persist_task_response(
            task_type=TaskType.FRAUD_SIGNAL_REFERRALS,
            actor_user_id="admin-1",
            entity_type="planet",
            entity_id="p-1",
            inputs={},
            response=_result(),
        )


def test_best_effort_tolerates_unknown_entity_type(audit: TaskAuditService) -> None:
    persisted = audit.persist_task_response_best_effort(
        task_type=TaskType.FRAUD_SIGNAL_REFERRALS,
        actor_user_id="admin-1",
        entity_type="planet",
        entity_id="p-1",
        inputs={},
        response=_result(),
    )

    assert persisted is None
    assert audit.list_task_invocations() == []


def test_run_and_record_with_unknown_entity_type_still_returns_result(gateway) -> None:
    result, persisted = gateway.run_and_record(
        TaskRequest(
            task_type=TaskType.FRAUD_SIGNAL_REFERRALS,
            actor_user_id="admin-1",
            entity_type="planet",
            entity_id="p-1",
            inputs=SAMPLE_INPUTS[TaskType.FRAUD_SIGNAL_REFERRALS],
        ),
    )

    assert result.success is True
    assert persisted is None


def test_token_usage_is_stored_and_summed(audit: TaskAuditService) -> None:
    since = utc_now() - timedelta(minutes=1)
    first = _persist(audit, input_tokens=1200, output_tokens=300, cost_usd=0.006)
    _persist(audit, input_tokens=800, output_tokens=None, cost_usd=None)
    _persist(audit, task_type=TaskType.SPONSOR_TILE_COPY)

    view = audit.get_task_invocation(first.job_id)
    summary = audit.usage_summary(since=since)

    assert view is not None
    assert (view.input_tokens, view.output_tokens) == (1200, 300)
    assert view.cost_usd == pytest.approx(0.006)
    assert summary.input_tokens == 2000
    assert summary.output_tokens == 300
    assert summary.cost_usd == pytest.approx(0.006)
    by_task = {row.task_type: row for row in summary.by_task}
    assert by_task["FRAUD_SIGNAL_REFERRALS"].input_tokens == 2000
    assert by_task["SPONSOR_TILE_COPY"].input_tokens == 0
    assert by_task["SPONSOR_TILE_COPY"].cost_usd == 0.0


def test_sensitive_inputs_are_masked_but_hash_uses_raw_inputs(audit: TaskAuditService) -> None:
    inputs = {
        "customer_email": "dana@example.com",
        "property": {"street_address": "1 Main St", "year_built": 1990},
        "category": "plumbing",
    }

    persisted = audit.persist_task_response(
        task_type=TaskType.FRAUD_SIGNAL_REFERRALS,
        actor_user_id="admin-1",
        entity_type=EntityType.PROPERTY,
        entity_id="prop-1",
        inputs=inputs,
        response=_result(),
    )
    view = audit.get_task_invocation(persisted.job_id)

    assert view is not None
    assert view.inputs["customer_email"].startswith("[HASHED:")
    assert view.inputs["property"]["street_address"].startswith("[HASHED:")
    assert view.inputs["property"]["year_built"] == 1990
    assert view.inputs["category"] == "plumbing"
    assert "dana@example.com" not in str(view.inputs)
    assert view.input_hash == compute_input_hash(inputs)


def test_rows_created_in_the_same_instant_keep_newest_first(
    audit: TaskAuditService,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    frozen = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
    monkeypatch.setattr("upkeep_ai.orchestrator.repository.utc_now", lambda: frozen)
    jobs = [_persist(audit, correlation_id=f"c-{index}").job_id for index in range(5)]

    history = audit.get_task_invocations_for_entity(EntityType.REFERRAL, "ref-1")
    listed = audit.list_task_invocations()

    assert [view.job_id for view in history] == jobs[::-1]
    assert [view.job_id for view in listed] == jobs[::-1]
    assert audit.list_task_invocations(limit=1)[0].job_id == jobs[-1]

    repository = audit._repository
    feedback_ids = [
        repository.insert_feedback(
            FeedbackWrite(job_id=jobs[0], actor_user_id="admin-1", rating=FeedbackRating.UP),
        ).feedback_id
        for _ in range(3)
    ]
    assert [item.feedback_id for item in repository.list_feedback()] == feedback_ids[::-1]
