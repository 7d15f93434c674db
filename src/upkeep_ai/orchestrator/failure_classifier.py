"""Deterministic model failure classification for executor audit events."""

from __future__ import annotations

from dataclasses import dataclass

from upkeep_ai.orchestrator.errors import (
    ModelHttpError,
    ModelInvocationError,
    ModelResponseError,
    ModelTimeoutError,
    ModelUnavailableError,
)
from upkeep_ai.orchestrator.models import FailureClass

MODEL_FAILURE_CLASSIFIER_VERSION = 1

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "insufficient",
    "billing",
    "credit balance",
    "usage limit",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "invalid x-api-key",
    "authentication",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "model_not_found",
    "unknown model",
    "unsupported model",
    "does not exist",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "rate_limit",
    "overloaded",
    "try again later",
)
_TRANSPORT_PATTERNS: tuple[str, ...] = (
    "connection",
    "network",
    "name resolution",
    "temporarily unavailable",
    "remote protocol",
)

_HTTP_TOO_MANY_REQUESTS = 429
_HTTP_AUTH_STATUSES = (401, 403)
_HTTP_NOT_FOUND = 404
_HTTP_OVERLOADED = 529


@dataclass(slots=True)
class ModelFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    def to_event_details(self, *, backend: str, model: str) -> dict[str, object]:
        """Serialize classifier diagnostics for policy events."""

        return {
            "classifier_version": MODEL_FAILURE_CLASSIFIER_VERSION,
            "backend": backend,
            "model": model,
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_model_failure(  # noqa: C901, PLR0911
    exc: BaseException,
    *,
    backend: str,
) -> ModelFailureClassification:
    """Classify a failed model call into a failure class."""

    if isinstance(exc, ModelTimeoutError):
        return _result(FailureClass.TIMEOUT, backend, "timeout")
    if isinstance(exc, ModelUnavailableError):
        return _result(FailureClass.PROVIDER_UNAVAILABLE, backend, "provider_unavailable")
    if isinstance(exc, ModelResponseError):
        return _result(FailureClass.BACKEND_ERROR, backend, "empty_response")
    if not isinstance(exc, ModelInvocationError):
        return _result(FailureClass.BACKEND_ERROR, backend, "unexpected_exception")

    status_code = exc.status_code
    haystack = str(exc).lower()

    if status_code == _HTTP_TOO_MANY_REQUESTS or status_code == _HTTP_OVERLOADED:
        pattern = _first_match(haystack, _BILLING_OR_QUOTA_PATTERNS)
        rule = "billing_or_quota" if pattern is not None else "rate_limit_status"
        return _result(FailureClass.RATE_LIMITED, backend, rule, pattern)
    if status_code in _HTTP_AUTH_STATUSES:
        return _result(FailureClass.ACCESS_OR_AUTH, backend, "auth_status")
    if status_code == _HTTP_NOT_FOUND:
        pattern = _first_match(haystack, _MODEL_NOT_AVAILABLE_PATTERNS)
        return _result(FailureClass.PROVIDER_UNAVAILABLE, backend, "model_not_available", pattern)

    for failure_class, rule, patterns in (
        (FailureClass.RATE_LIMITED, "billing_or_quota", _BILLING_OR_QUOTA_PATTERNS),
        (FailureClass.ACCESS_OR_AUTH, "access_or_auth", _ACCESS_OR_AUTH_PATTERNS),
        (FailureClass.PROVIDER_UNAVAILABLE, "model_not_available", _MODEL_NOT_AVAILABLE_PATTERNS),
        (FailureClass.RATE_LIMITED, "rate_limit", _RATE_LIMIT_PATTERNS),
    ):
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return _result(failure_class, backend, rule, pattern)

    if isinstance(exc, ModelHttpError) and status_code is None:
        pattern = _first_match(haystack, _TRANSPORT_PATTERNS)
        return _result(FailureClass.TRANSPORT, backend, "transport", pattern)

    return _result(FailureClass.BACKEND_ERROR, backend, "fallback_backend_error")


def _result(
    failure_class: FailureClass,
    backend: str,
    rule: str,
    pattern: str | None = None,
) -> ModelFailureClassification:
    return ModelFailureClassification(
        failure_class=failure_class,
        reason_code=f"{backend}_{rule}",
        matched_rule=rule,
        matched_pattern=pattern,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
