from __future__ import annotations

import allure
import pytest

from upkeep_ai.orchestrator.errors import (
    ModelHttpError,
    ModelResponseError,
    ModelTimeoutError,
    ModelUnavailableError,
)
from upkeep_ai.orchestrator.failure_classifier import (
    MODEL_FAILURE_CLASSIFIER_VERSION,
    classify_model_failure,
)
from upkeep_ai.orchestrator.models import FailureClass

pytestmark = [
    allure.epic("AI Orchestration"),
    allure.feature("Failure classifier"),
]


@pytest.mark.parametrize(
    ("exc", "failure_class", "rule"),
    [
        (ModelTimeoutError("slow"), FailureClass.TIMEOUT, "timeout"),
        (
            ModelUnavailableError("no key"),
            FailureClass.PROVIDER_UNAVAILABLE,
            "provider_unavailable",
        ),
        (ModelResponseError("no text"), FailureClass.BACKEND_ERROR, "empty_response"),
        (RuntimeError("boom"), FailureClass.BACKEND_ERROR, "unexpected_exception"),
        (
            ModelHttpError("HTTP 429", status_code=429),
            FailureClass.RATE_LIMITED,
            "rate_limit_status",
        ),
        (
            ModelHttpError("HTTP 429: You exceeded your current quota", status_code=429),
            FailureClass.RATE_LIMITED,
            "billing_or_quota",
        ),
        (
            ModelHttpError("HTTP 529", status_code=529),
            FailureClass.RATE_LIMITED,
            "rate_limit_status",
        ),
        (ModelHttpError("HTTP 401", status_code=401), FailureClass.ACCESS_OR_AUTH, "auth_status"),
        (ModelHttpError("HTTP 403", status_code=403), FailureClass.ACCESS_OR_AUTH, "auth_status"),
        (
            ModelHttpError("HTTP 404: model not found", status_code=404),
            FailureClass.PROVIDER_UNAVAILABLE,
            "model_not_available",
        ),
        (
            ModelHttpError("HTTP 400: invalid api key provided", status_code=400),
            FailureClass.ACCESS_OR_AUTH,
            "access_or_auth",
        ),
        (
            ModelHttpError("HTTP 500: server overloaded", status_code=500),
            FailureClass.RATE_LIMITED,
            "rate_limit",
        ),
        (
            ModelHttpError("Connection refused"),
            FailureClass.TRANSPORT,
            "transport",
        ),
        (
            ModelHttpError("HTTP 500: internal error", status_code=500),
            FailureClass.BACKEND_ERROR,
            "fallback_backend_error",
        ),
    ],
)
def test_classification_rules(exc: BaseException, failure_class: FailureClass, rule: str) -> None:
    classification = classify_model_failure(exc, backend="openai")

    assert classification.failure_class is failure_class
    assert classification.matched_rule == rule
    assert classification.reason_code == f"openai_{rule}"


def test_matched_pattern_is_reported() -> None:
    classification = classify_model_failure(
        ModelHttpError("HTTP 429: billing hard limit reached", status_code=429),
        backend="anthropic",
    )

    assert classification.matched_pattern == "billing"


def test_event_details_shape() -> None:
    classification = classify_model_failure(ModelTimeoutError("slow"), backend="openai")

    details = classification.to_event_details(backend="openai", model="gpt-4o")

    assert details == {
        "classifier_version": MODEL_FAILURE_CLASSIFIER_VERSION,
        "backend": "openai",
        "model": "gpt-4o",
        "failure_class": "timeout",
        "reason_code": "openai_timeout",
        "matched_rule": "timeout",
        "matched_pattern": None,
    }
