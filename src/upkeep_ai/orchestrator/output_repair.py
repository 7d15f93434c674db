"""Best-effort JSON object recovery from raw model completions."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


@dataclass(slots=True)
class RepairResult:
    """Decoded payload and how it was found."""

    payload: dict[str, Any] | None
    strategy: str

    @property
    def repaired(self) -> bool:
        return self.payload is not None and self.strategy != "direct"


def extract_json_object(text: str) -> RepairResult:
    """Decode a JSON object from a completion, tolerating fences and chatter.

    Tries, in order: the whole text, the first fenced ```json block, then the
    span between the first `{` and the last `}`.
    """

    stripped = text.strip()
    if not stripped:
        return RepairResult(payload=None, strategy="empty")

    direct = _try_load_dict(stripped)
    if direct is not None:
        return RepairResult(payload=direct, strategy="direct")

    fenced = _FENCED_JSON.search(stripped)
    if fenced is not None:
        payload = _try_load_dict(fenced.group(1))
        if payload is not None:
            return RepairResult(payload=payload, strategy="fenced")

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return RepairResult(payload=None, strategy="none")
    payload = _try_load_dict(stripped[start : end + 1])
    if payload is None:
        return RepairResult(payload=None, strategy="none")
    return RepairResult(payload=payload, strategy="brace_span")


def _try_load_dict(raw: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed
