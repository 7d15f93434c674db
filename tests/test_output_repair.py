from __future__ import annotations

import allure
import pytest

from upkeep_ai.orchestrator.output_repair import extract_json_object

pytestmark = [
    allure.epic("AI Orchestration"),
    allure.feature("Output repair"),
]


def test_plain_json_is_not_a_repair() -> None:
    result = extract_json_object('{"risk_score": 12}')

    assert result.payload == {"risk_score": 12}
    assert result.strategy == "direct"
    assert result.repaired is False


def test_fenced_block_is_extracted() -> None:
    text = 'Here you go:\n```json\n{"message": "Hi"}\n```\nLet me know!'

    result = extract_json_object(text)

    assert result.payload == {"message": "Hi"}
    assert result.strategy == "fenced"
    assert result.repaired is True


def test_brace_span_recovers_object_wrapped_in_chatter() -> None:
    result = extract_json_object('Sure! {"a": {"b": 1}} Hope that helps.')

    assert result.payload == {"a": {"b": 1}}
    assert result.strategy == "brace_span"


@pytest.mark.parametrize(
    ("text", "strategy"),
    [
        ("", "empty"),
        ("   \n", "empty"),
        ("I cannot help with that.", "none"),
        ("[1, 2, 3]", "none"),
        ("{not json}", "none"),
    ],
)
def test_unrecoverable_text(text: str, strategy: str) -> None:
    result = extract_json_object(text)

    assert result.payload is None
    assert result.strategy == strategy
    assert result.repaired is False
