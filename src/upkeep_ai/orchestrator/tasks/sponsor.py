"""Sponsor copy task: tile headline, description and CTA variants with compliance notes."""

from __future__ import annotations

from upkeep_ai.orchestrator.coercion import (
    as_choice,
    as_dict,
    as_dict_list,
    as_int,
    as_str,
    as_str_list,
    check_input,
    is_non_empty_str,
)
from upkeep_ai.orchestrator.models import ActorRole, CapabilityGroup, TaskType
from upkeep_ai.orchestrator.tasks.base import JsonObject, Prompt, TaskDefinition

TONES: tuple[str, ...] = ("professional", "friendly", "urgent")
NOTE_TYPES: tuple[str, ...] = ("approved", "warning", "suggestion")
DEFAULT_CHAR_LIMITS: dict[str, int] = {"headline": 50, "description": 120, "cta": 25}

PROHIBITED_CLAIMS: tuple[str, ...] = (
    "guaranteed",
    "guarantee",
    "risk-free",
    "100% safe",
    "best in the world",
    "#1",
    "cheapest",
    "lowest price",
    "never fails",
    "endorsed by regularupkeep",
    "certified by regularupkeep",
    "limited time only",
    "act now",
)


def find_prohibited_claims(text: str) -> list[str]:
    """Prohibited marketing claims contained in `text`, case-insensitive."""

    lowered = text.lower()
    return [claim for claim in PROHIBITED_CLAIMS if claim in lowered]


def _char_limits(inputs: JsonObject) -> dict[str, int]:
    overrides = as_dict(inputs.get("char_limits"))
    limits = dict(DEFAULT_CHAR_LIMITS)
    for key in limits:
        value = as_int(overrides.get(key))
        if value > 0:
            limits[key] = value
    return limits


def _prompt(inputs: JsonObject) -> Prompt:
    limits = _char_limits(inputs)
    tone = as_choice(inputs.get("tone"), TONES, "professional")
    avoid = as_str_list(inputs.get("avoid_phrases"))
    prohibited = "\n".join(f'- "{claim}"' for claim in PROHIBITED_CLAIMS)
    system = f"""You are a marketing copywriter for a home-maintenance platform's sponsor program.

Create engaging, honest copy for sponsor tiles that appear on homeowner dashboards.

REQUIREMENTS:
- Generate 3-4 variants for headlines, CTAs and descriptions
- Headlines: max {limits["headline"]} characters
- Descriptions: max {limits["description"]} characters
- CTAs: max {limits["cta"]} characters
- Match the requested tone: {tone}
- Focus on homeowner benefits; be authentic, not salesy

PROHIBITED CLAIMS (never use these or similar):
{prohibited}
"""
    guidelines = as_str(inputs.get("brand_guidelines"))
    if guidelines:
        system += f"\nBRAND GUIDELINES:\n{guidelines}\n"
    if avoid:
        system += "\nAVOID THESE PHRASES:\n" + "\n".join(f'- "{p}"' for p in avoid) + "\n"
    system += "\nRespond with JSON only."

    user = f"""Create sponsor tile copy variants:

Product: {as_str(inputs.get("product_name"))}
Category: {as_str(inputs.get("product_category"))}
Target audience: {as_str(inputs.get("target_audience"), "homeowners")}
Key features: {", ".join(as_str_list(inputs.get("key_features"))) or "not specified"}
Tone: {tone}

Respond in this JSON format:
{{
  "headlines": [{{ "text": "Headline text", "char_count": 25 }}],
  "ctas": [{{ "text": "CTA text", "char_count": 12 }}],
  "short_descriptions": [{{ "text": "Description text", "char_count": 80 }}],
  "compliance_notes": [{{ "type": "approved|warning|suggestion", "message": "Note" }}],
  "recommended": {{ "headline": "...", "description": "...", "cta": "..." }}
}}

Provide 3-4 options for each category and at least one compliance note."""
    return Prompt(system=system, user=user)


def _validate_input(inputs: JsonObject) -> list[str]:
    return check_input(
        inputs,
        strings=("product_name", "product_category"),
        lists=("key_features",),
    )


def _variants(value: object) -> list[JsonObject]:
    variants: list[JsonObject] = []
    for item in as_dict_list(value):
        text = as_str(item.get("text"))
        if text:
            variants.append({"text": text, "char_count": len(text)})
    return variants


def _parse(payload: JsonObject) -> JsonObject:
    headlines = _variants(payload.get("headlines"))
    ctas = _variants(payload.get("ctas"))
    descriptions = _variants(payload.get("short_descriptions"))
    notes = [
        {
            "type": as_choice(item.get("type"), NOTE_TYPES, "suggestion"),
            "message": as_str(item.get("message")),
        }
        for item in as_dict_list(payload.get("compliance_notes"))
    ]
    for variant in (*headlines, *ctas, *descriptions):
        violations = find_prohibited_claims(variant["text"])
        if violations:
            notes.append(
                {
                    "type": "warning",
                    "message": (
                        f'Prohibited claim detected: "{", ".join(violations)}" - '
                        "must be removed before publishing"
                    ),
                },
            )

    recommended = as_dict(payload.get("recommended"))
    return {
        "headlines": headlines,
        "ctas": ctas,
        "short_descriptions": descriptions,
        "compliance_notes": notes,
        "recommended": {
            "headline": as_str(
                recommended.get("headline"),
                headlines[0]["text"] if headlines else "",
            ),
            "description": as_str(
                recommended.get("description"),
                descriptions[0]["text"] if descriptions else "",
            ),
            "cta": as_str(recommended.get("cta"), ctas[0]["text"] if ctas else "Learn More"),
        },
    }


def _validate(output: JsonObject) -> bool:
    recommended = output.get("recommended")
    return (
        all(
            isinstance(output.get(key), list) and len(output[key]) > 0
            for key in ("headlines", "ctas", "short_descriptions")
        )
        and isinstance(output.get("compliance_notes"), list)
        and isinstance(recommended, dict)
        and all(
            is_non_empty_str(recommended.get(key)) for key in ("headline", "description", "cta")
        )
    )


def _fit(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 3)].rstrip() + "..."


def _fallback(inputs: JsonObject) -> JsonObject:
    limits = _char_limits(inputs)
    product = as_str(inputs.get("product_name"), "Our Partner")
    category = as_str(inputs.get("product_category"), "Maintenance")
    features = as_str_list(inputs.get("key_features"))

    headlines = [
        _fit(f"Discover {product}", limits["headline"]),
        _fit(f"{product} for Your Home", limits["headline"]),
        _fit(f"Home {category} Made Easy", limits["headline"]),
    ]
    descriptions = [
        _fit(
            f"{product} offers {features[0] if features else 'quality solutions'} "
            "for homeowners.",
            limits["description"],
        ),
        _fit(
            f"Professional {category.lower()} solutions trusted by homeowners.",
            limits["description"],
        ),
        _fit(f"Keep your home maintained with {product}.", limits["description"]),
    ]
    ctas = [_fit(text, limits["cta"]) for text in ("Learn More", "Get Started", "See Details")]

    notes: list[JsonObject] = [
        {
            "type": "suggestion",
            "message": "Fallback copy generated - AI was unavailable. Review before publishing.",
        },
    ]
    violations = sorted(
        {claim for text in headlines + descriptions for claim in find_prohibited_claims(text)},
    )
    if violations:
        notes.append(
            {
                "type": "warning",
                "message": (
                    f'Product details contain prohibited claims: "{", ".join(violations)}" - '
                    "edit before publishing"
                ),
            },
        )
    return {
        "headlines": [{"text": text, "char_count": len(text)} for text in headlines],
        "ctas": [{"text": text, "char_count": len(text)} for text in ctas],
        "short_descriptions": [{"text": text, "char_count": len(text)} for text in descriptions],
        "compliance_notes": notes,
        "recommended": {"headline": headlines[0], "description": descriptions[0], "cta": ctas[0]},
    }


SPONSOR_TILE_COPY_TASK = TaskDefinition(
    task_type=TaskType.SPONSOR_TILE_COPY,
    capability=CapabilityGroup.SPONSOR_COPY,
    description=(
        "Generate multiple marketing copy variants for sponsor tiles with compliance checking"
    ),
    preferred_model="claude-haiku-4-5-20251001",
    fallback_model="claude-sonnet-4-5-20250929",
    max_tokens=1500,
    temperature=0.7,
    build_prompt=_prompt,
    parse_output=_parse,
    validate_output=_validate,
    validate_input=_validate_input,
    get_fallback=_fallback,
    required_output_fields=("headlines", "ctas", "short_descriptions"),
    allowed_actors=(ActorRole.ADMIN, ActorRole.SYSTEM),
)

SPONSOR_TASKS: tuple[TaskDefinition, ...] = (SPONSOR_TILE_COPY_TASK,)
