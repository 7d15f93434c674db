"""Content guardrails for task inputs and model outputs.

Input checks only annotate: PII and emergency wording become policy events
and the task proceeds. Output checks run on validated model output; critical
findings (dangerous DIY instructions, PII) must be sanitized away before the
output is served. Only string values are scanned, never keys or numbers.
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from upkeep_ai.orchestrator.models import PolicyEvent, PolicyEventType, SafetySeverity

SAFETY_REMOVED_TEXT = "[Content removed for safety - please consult a licensed professional]"
REDACTED_TEXT = "[REDACTED]"

SENSITIVE_INPUT_KEYS: tuple[str, ...] = (
    "email",
    "phone",
    "address",
    "ssn",
    "password",
    "credit_card",
    "bank_account",
)

_DANGEROUS_DIY_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        # electrical
        r"\b(rewire|wire yourself|diy electrical|bypass breaker|splice wire|replace panel"
        r"|modify circuit)",
        r"\b(without an electrician|skip the electrician|save money.*electrical)",
        # gas
        r"\b(gas line|gas leak|pilot light|gas valve|propane|natural gas).*"
        r"\b(diy|yourself|fix it|repair it)",
        r"\b(without a plumber|skip the plumber).*gas",
        # structural
        r"\b(remove.*load.?bearing|knock out.*wall|diy.*foundation|structural.*yourself)",
        # hazardous materials
        r"\b(asbestos|lead paint|mold removal).*\b(diy|yourself|remove it yourself)",
    )
)

_EXACT_PRICE_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\$\d{1,3}(?:,\d{3})*(?:\.\d{2})?\b(?!\s*(?:range|to|-))",
        r"(?:cost|price|charge|fee|quote).*(?:is|will be|would be)\s*\$\d+",
        r"\bexactly\s*\$\d+",
        r"\bguaranteed\s*(?:price|cost|rate)",
    )
)

_PII_PATTERNS = (
    re.compile(r"\b\d{3}[-.\s]?\d{2}[-.\s]?\d{4}\b"),  # SSN
    re.compile(r"\b\d{16}\b"),  # card number
    re.compile(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b"),  # phone
    re.compile(r"\b[\w.+-]+@[\w-]+(?:\.[\w-]+)+\b"),  # email
)

_LEGAL_CLAIM_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\bguarantee(?:d|s)?\b.*\b(?:fix|solve|repair)",
        r"\bwarranty\b.*\b(?:void|invalid)",
        r"\b(?:liable|liability|lawsuit|sue)\b",
        r"\byou (?:must|have to|need to)\b.*\b(?:pay|compensate)",
    )
)

_PROFANITY_PATTERNS = (re.compile(r"\b(damn|hell|crap)\b", re.IGNORECASE),)

_EMERGENCY_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\bgas leak\b",
        r"\bsmoke\b.*\bfire\b",
        r"\bfire\b.*\bsmoke\b",
        r"\belectrical fire\b",
        r"\bflooding\b",
        r"\bwater.*everywhere\b",
        r"\bno heat\b.*\b(winter|cold|freezing)\b",
        r"\bcarbon monoxide\b",
        r"\bco detector\b.*\balarm\b",
        r"\bsparking\b.*\boutlet\b",
        r"\bexposed wire\b",
        r"\bsewage\b.*\bbackup\b",
    )
)

_Rule = tuple[PolicyEventType, SafetySeverity, tuple[re.Pattern[str], ...]]

# reported in this order
_OUTPUT_RULES: tuple[_Rule, ...] = (
    (
        PolicyEventType.DANGEROUS_DIY_DETECTED,
        SafetySeverity.CRITICAL,
        _DANGEROUS_DIY_PATTERNS,
    ),
    (PolicyEventType.PRICING_MENTIONED, SafetySeverity.WARNING, _EXACT_PRICE_PATTERNS),
    (PolicyEventType.PII_DETECTED, SafetySeverity.CRITICAL, _PII_PATTERNS),
    (PolicyEventType.LEGAL_CLAIM_DETECTED, SafetySeverity.WARNING, _LEGAL_CLAIM_PATTERNS),
    (PolicyEventType.PROFANITY_DETECTED, SafetySeverity.INFO, _PROFANITY_PATTERNS),
)


def check_input_safety(inputs: Mapping[str, Any]) -> list[PolicyEvent]:
    """Warn about PII and emergencies mentioned in task inputs."""

    text = json.dumps(inputs, ensure_ascii=False, default=str)
    events: list[PolicyEvent] = []
    pattern = _first_match(_PII_PATTERNS, [text])
    if pattern is not None:
        events.append(
            _finding(PolicyEventType.PII_DETECTED, SafetySeverity.WARNING, "input", pattern),
        )
    if check_for_emergency(text):
        events.append(
            PolicyEvent(
                PolicyEventType.EMERGENCY_DETECTED,
                {"severity": SafetySeverity.WARNING.value, "source": "input"},
            ),
        )
    return events


def check_output_safety(output: Mapping[str, Any]) -> list[PolicyEvent]:
    """Scan every string in a model output; at most one event per rule."""

    texts = list(_iter_strings(output))
    events: list[PolicyEvent] = []
    for event_type, severity, patterns in _OUTPUT_RULES:
        pattern = _first_match(patterns, texts)
        if pattern is not None:
            events.append(_finding(event_type, severity, "output", pattern))
    return events


def check_for_emergency(text: str) -> bool:
    return any(pattern.search(text) for pattern in _EMERGENCY_PATTERNS)


def has_critical(events: Iterable[PolicyEvent]) -> bool:
    return any(
        event.details.get("severity") == SafetySeverity.CRITICAL.value for event in events
    )


def sanitize_output(output: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of `output` with dangerous instructions and PII replaced in every string."""

    return {key: _sanitize_value(value) for key, value in output.items()}


def sanitize_inputs_for_storage(inputs: Mapping[str, Any]) -> dict[str, Any]:
    """Mask values under sensitive keys before inputs are written to the audit trail.

    String values become a short SHA-256 marker so equal values stay comparable;
    anything else is replaced outright. Nested objects and lists are walked.
    """

    sanitized: dict[str, Any] = {}
    for key, value in inputs.items():
        if _is_sensitive_key(key):
            sanitized[key] = _mask(value)
        else:
            sanitized[key] = _sanitize_stored_value(value)
    return sanitized


def _sanitize_stored_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return sanitize_inputs_for_storage(value)
    if isinstance(value, list):
        return [_sanitize_stored_value(item) for item in value]
    return value


def _is_sensitive_key(key: object) -> bool:
    lowered = str(key).lower()
    return any(field in lowered for field in SENSITIVE_INPUT_KEYS)


def _mask(value: Any) -> str:
    if isinstance(value, str):
        digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]
        return f"[HASHED:{digest}]"
    return REDACTED_TEXT


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, str):
        return _sanitize_text(value)
    if isinstance(value, Mapping):
        return {key: _sanitize_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_sanitize_value(item) for item in value]
    return value


def _sanitize_text(text: str) -> str:
    for pattern in _DANGEROUS_DIY_PATTERNS:
        text = pattern.sub(SAFETY_REMOVED_TEXT, text)
    for pattern in _PII_PATTERNS:
        text = pattern.sub(REDACTED_TEXT, text)
    return text


def _iter_strings(value: Any) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from _iter_strings(item)
    elif isinstance(value, list):
        for item in value:
            yield from _iter_strings(item)


def _first_match(
    patterns: Iterable[re.Pattern[str]],
    texts: list[str],
) -> re.Pattern[str] | None:
    for pattern in patterns:
        if any(pattern.search(text) for text in texts):
            return pattern
    return None


def _finding(
    event_type: PolicyEventType,
    severity: SafetySeverity,
    source: str,
    pattern: re.Pattern[str],
) -> PolicyEvent:
    return PolicyEvent(
        event_type,
        {"severity": severity.value, "source": source, "pattern": pattern.pattern},
    )
