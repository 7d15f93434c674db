"""Token cost estimation for model completions."""

from __future__ import annotations

import os
from dataclasses import dataclass

PRICING_ENV = "UPKEEP_AI_MODEL_PRICING"


@dataclass(slots=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float


DEFAULT_PRICING: dict[str, ModelPricing] = {
    "gpt-4o": ModelPricing(input_per_1m=2.5, output_per_1m=10.0),
    "gpt-4o-mini": ModelPricing(input_per_1m=0.15, output_per_1m=0.6),
    "gpt-4-turbo": ModelPricing(input_per_1m=10.0, output_per_1m=30.0),
    "claude-sonnet-4-5-20250929": ModelPricing(input_per_1m=3.0, output_per_1m=15.0),
    "claude-haiku-4-5-20251001": ModelPricing(input_per_1m=0.25, output_per_1m=1.25),
    "claude-opus-4-5-20251101": ModelPricing(input_per_1m=15.0, output_per_1m=75.0),
    "claude-3-5-sonnet-20241022": ModelPricing(input_per_1m=3.0, output_per_1m=15.0),
    "claude-3-haiku-20240307": ModelPricing(input_per_1m=0.25, output_per_1m=1.25),
}


def estimate_cost_usd(
    *,
    model: str | None,
    input_tokens: int | None,
    output_tokens: int | None,
) -> float | None:
    """Estimate completion cost in USD; None when the model or usage is unknown."""

    if model is None or (input_tokens is None and output_tokens is None):
        return None
    pricing = lookup_pricing(model)
    if pricing is None:
        return None
    return ((input_tokens or 0) / 1_000_000) * pricing.input_per_1m + (
        (output_tokens or 0) / 1_000_000
    ) * pricing.output_per_1m


def lookup_pricing(model: str) -> ModelPricing | None:
    """Env overrides first, then the built-in table, then an env `*` default."""

    overrides = _parse_pricing_mapping(os.getenv(PRICING_ENV, ""))
    name = model.strip()
    direct = overrides.get(name) or DEFAULT_PRICING.get(name)
    if direct is not None:
        return direct
    return overrides.get("*")


def _parse_pricing_mapping(raw: str) -> dict[str, ModelPricing]:
    """Parse `UPKEEP_AI_MODEL_PRICING`.

    Format:
    - `model:input_per_1m:output_per_1m`
    - multiple entries separated by `,`
    - `*` as the model sets a default for unlisted models
    """

    parsed: dict[str, ModelPricing] = {}
    if not raw.strip():
        return parsed

    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.split(":")]
        if len(parts) != 3:
            continue
        model, input_price, output_price = parts
        try:
            input_per_1m = float(input_price)
            output_per_1m = float(output_price)
        except ValueError:
            continue
        parsed[model] = ModelPricing(input_per_1m=input_per_1m, output_per_1m=output_per_1m)
    return parsed
