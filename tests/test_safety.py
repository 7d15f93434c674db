from __future__ import annotations

import hashlib

import allure
import pytest

from upkeep_ai.orchestrator.models import PolicyEventType
from upkeep_ai.orchestrator.safety import (
    REDACTED_TEXT,
    SAFETY_REMOVED_TEXT,
    check_for_emergency,
    check_input_safety,
    check_output_safety,
    has_critical,
    sanitize_inputs_for_storage,
    sanitize_output,
)

pytestmark = [
    allure.epic("AI Orchestration"),
    allure.feature("Content safety"),
]


def _types(events) -> list[PolicyEventType]:
    return [event.event_type for event in events]


@pytest.mark.parametrize(
    "text",
    ["My SSN is 123-45-6789", "Card: 1234567812345678", "Call 555.123.4567", "dana@example.com"],
)
def test_input_pii_is_a_warning(text: str) -> None:
    events = check_input_safety({"user_description": text})

    assert _types(events) == [PolicyEventType.PII_DETECTED]
    assert events[0].details["severity"] == "warning"
    assert has_critical(events) is False


def test_plain_input_is_not_flagged() -> None:
    assert check_input_safety({"user_description": "My faucet is leaking in the kitchen"}) == []


def test_numbers_in_nested_inputs_are_scanned() -> None:
    events = check_input_safety({"contact": {"digits": 5551234567}})

    assert _types(events) == [PolicyEventType.PII_DETECTED]


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("I think there is a gas leak in the basement", True),
        ("Sparking from the outlet in the hallway", True),
        ("No heat and it is freezing outside", True),
        ("The dishwasher is noisy", False),
    ],
)
def test_emergency_detection(text: str, expected: bool) -> None:
    assert check_for_emergency(text) is expected


@pytest.mark.parametrize(
    ("text", "event_type", "severity"),
    [
        (
            "You should rewire the outlet yourself to save money",
            PolicyEventType.DANGEROUS_DIY_DETECTED,
            "critical",
        ),
        ("The cost will be exactly $500", PolicyEventType.PRICING_MENTIONED, "warning"),
        ("Reach the owner at 555-123-4567", PolicyEventType.PII_DETECTED, "critical"),
        (
            "We guarantee this will fix your problem",
            PolicyEventType.LEGAL_CLAIM_DETECTED,
            "warning",
        ),
        ("What the hell happened here", PolicyEventType.PROFANITY_DETECTED, "info"),
    ],
)
def test_output_findings(text: str, event_type: PolicyEventType, severity: str) -> None:
    events = check_output_safety({"summary": text})

    assert event_type in _types(events)
    finding = next(event for event in events if event.event_type is event_type)
    assert finding.details["severity"] == severity
    assert finding.details["source"] == "output"


def test_safe_recommendation_has_no_critical_findings() -> None:
    events = check_output_safety(
        {"summary": "We recommend hiring a licensed electrician to inspect your panel"},
    )

    assert has_critical(events) is False


def test_output_keys_and_numbers_are_not_scanned() -> None:
    output = {"damn": 5551234567, "items": [{"amount": 123456789}], "summary": "All good"}

    assert check_output_safety(output) == []


def test_each_rule_reports_once() -> None:
    events = check_output_safety(
        {"a": "SSN 123-45-6789", "b": ["call 555-123-4567", {"c": "card 1234567812345678"}]},
    )

    assert _types(events) == [PolicyEventType.PII_DETECTED]


def test_sanitize_output_walks_nested_strings() -> None:
    output = {
        "summary": "You can rewire the outlet yourself",
        "steps": [{"note": "Your SSN 123-45-6789 is confirmed"}],
        "risk_score": 1234567890,
        "flag": True,
    }

    sanitized = sanitize_output(output)

    assert SAFETY_REMOVED_TEXT in sanitized["summary"]
    assert sanitized["steps"][0]["note"] == f"Your SSN {REDACTED_TEXT} is confirmed"
    assert sanitized["risk_score"] == 1234567890
    assert sanitized["flag"] is True
    assert output["steps"][0]["note"] == "Your SSN 123-45-6789 is confirmed"
    assert has_critical(check_output_safety(sanitized)) is False


def test_storage_redaction_masks_sensitive_keys() -> None:
    inputs = {
        "customer_email": "dana@example.com",
        "Phone": 5551234567,
        "property": {"street_address": "1 Main St", "year_built": 1990},
        "contacts": [{"password": "hunter2"}, "plain"],
        "category": "plumbing",
    }

    stored = sanitize_inputs_for_storage(inputs)

    digest = hashlib.sha256(b"dana@example.com").hexdigest()[:16]
    assert stored["customer_email"] == f"[HASHED:{digest}]"
    assert stored["Phone"] == REDACTED_TEXT
    assert stored["property"]["street_address"].startswith("[HASHED:")
    assert stored["property"]["year_built"] == 1990
    assert stored["contacts"][0]["password"].startswith("[HASHED:")
    assert stored["contacts"][1] == "plain"
    assert stored["category"] == "plumbing"
    assert inputs["customer_email"] == "dana@example.com"
