"""Helpers to normalise loosely-typed JSON into task output shapes."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import Any


def as_str(value: object, default: str = "") -> str:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or default
    if isinstance(value, int | float):
        return str(value)
    return default


def as_str_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    items: list[str] = []
    for item in value:
        text = as_str(item)
        if text:
            items.append(text)
    return items


def as_choice(value: object, choices: Iterable[str], default: str) -> str:
    text = as_str(value).lower()
    return text if text in set(choices) else default


def as_bool(value: object, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    return default


def as_float(value: object, default: float = 0.0) -> float:
    """Finite float from a JSON value; NaN, infinities and huge integers give `default`."""

    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        value = value.strip()
    elif not isinstance(value, int | float):
        return default
    try:
        number = float(value)
    except (OverflowError, ValueError):
        return default
    return number if math.isfinite(number) else default


def as_int(value: object, default: int = 0) -> int:
    return int(as_float(value, float(default)))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def as_dict(value: object) -> dict[str, Any]:
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def as_dict_list(value: object) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [dict(item) for item in value if isinstance(item, Mapping)]


def is_non_empty_str(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


def is_str_list(value: object) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def is_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def check_input(  # noqa: C901
    inputs: Mapping[str, Any],
    *,
    strings: Iterable[str] = (),
    numbers: Iterable[str] = (),
    lists: Iterable[str] = (),
    mappings: Iterable[str] = (),
) -> list[str]:
    """List shape problems for required input fields; empty means well-formed.

    Dotted names address nested mappings, e.g. ``metrics.rating``.
    """

    problems: list[str] = []
    for name in strings:
        value = _lookup(inputs, name)
        if not isinstance(value, str):
            problems.append(f"{name} must be a string")
    for name in numbers:
        if not is_number(_lookup(inputs, name)):
            problems.append(f"{name} must be a number")
    for name in lists:
        if not isinstance(_lookup(inputs, name), list):
            problems.append(f"{name} must be a list")
    for name in mappings:
        if not isinstance(_lookup(inputs, name), Mapping):
            problems.append(f"{name} must be an object")
    return problems


def _lookup(inputs: Mapping[str, Any], dotted: str) -> object:
    current: object = inputs
    for part in dotted.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current
