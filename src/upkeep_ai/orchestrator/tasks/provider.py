"""Provider copilot tasks: estimate drafts, customer messages and invoice narratives."""

from __future__ import annotations

from upkeep_ai.orchestrator.coercion import (
    as_choice,
    as_dict_list,
    as_str,
    as_str_list,
    check_input,
    is_non_empty_str,
    is_str_list,
)
from upkeep_ai.orchestrator.models import ActorRole, CapabilityGroup, TaskType
from upkeep_ai.orchestrator.tasks.base import JsonObject, Prompt, TaskDefinition

LINE_ITEM_TYPES: tuple[str, ...] = ("labor", "material")
MESSAGE_CONTEXTS: tuple[str, ...] = (
    "introduction",
    "update",
    "scheduling",
    "completion",
    "followup",
)
MESSAGE_TONES: tuple[str, ...] = ("professional", "friendly", "urgent")
DEFAULT_DISCLAIMER = (
    "Work performed as described. Standard workmanship warranty applies. "
    "Please contact us with any questions."
)

_MESSAGE_TEMPLATES: dict[str, str] = {
    "introduction": (
        "Hi {name}, thank you for choosing us for your {category} needs. "
        "We look forward to helping you."
    ),
    "update": (
        "Hi {name}, I wanted to update you on your {category} service. "
        "Please let me know if you have any questions."
    ),
    "scheduling": (
        "Hi {name}, I'd like to schedule your {category} service. What times work best for you?"
    ),
    "completion": (
        "Hi {name}, your {category} service has been completed. Thank you for your business!"
    ),
    "followup": (
        "Hi {name}, I'm following up on your recent {category} service. "
        "Is everything working well?"
    ),
}


# PROVIDER_ESTIMATE_DRAFT


def _estimate_prompt(inputs: JsonObject) -> Prompt:
    system = """You are an assistant helping home service providers create professional estimates.

Suggest scope of work items and line items based on the job description.

IMPORTANT GUIDELINES:
- NEVER include specific dollar amounts or prices
- Focus on describing the work clearly
- Include both labor and material items where appropriate
- Suggest warranty considerations
- Ask clarifying questions if information is missing

Respond with JSON only."""

    notes = as_str(inputs.get("provider_notes"))
    similar = as_str(inputs.get("similar_jobs_context"))
    user = f"""Help draft an estimate for this job:

Category: {as_str(inputs.get("category"), "general")}
Provider brief: {as_str(inputs.get("provider_brief"))}
{f"Provider notes: {notes}" if notes else ""}
{f"Similar past jobs: {similar}" if similar else ""}

Respond in this JSON format:
{{
  "scope_of_work": "Detailed description of the work to be performed",
  "line_item_suggestions": [
    {{ "description": "Item description", "type": "labor|material", "note": "optional note" }}
  ],
  "clarifying_questions": ["Question for the customer or technician"],
  "estimated_duration_range": "e.g., 2-4 hours",
  "warranty_considerations": ["Warranty note"],
  "exclusions": ["What is not included"],
  "assumptions": ["Assumption made"]
}}"""
    return Prompt(system=system, user=user)


def _estimate_validate_input(inputs: JsonObject) -> list[str]:
    return check_input(inputs, strings=("category", "provider_brief"))


def _estimate_parse(payload: JsonObject) -> JsonObject:
    line_items: list[JsonObject] = []
    for item in as_dict_list(payload.get("line_item_suggestions")):
        description = as_str(item.get("description"))
        if not description:
            continue
        line_item: JsonObject = {
            "description": description,
            "type": as_choice(item.get("type"), LINE_ITEM_TYPES, "labor"),
        }
        note = as_str(item.get("note"))
        if note:
            line_item["note"] = note
        line_items.append(line_item)
    return {
        "scope_of_work": as_str(payload.get("scope_of_work")),
        "line_item_suggestions": line_items,
        "clarifying_questions": as_str_list(payload.get("clarifying_questions")),
        "estimated_duration_range": as_str(payload.get("estimated_duration_range"), "TBD"),
        "warranty_considerations": as_str_list(payload.get("warranty_considerations")),
        "exclusions": as_str_list(payload.get("exclusions")),
        "assumptions": as_str_list(payload.get("assumptions")),
    }


def _estimate_validate(output: JsonObject) -> bool:
    items = output.get("line_item_suggestions")
    return (
        is_non_empty_str(output.get("scope_of_work"))
        and isinstance(items, list)
        and all(
            isinstance(item, dict)
            and is_non_empty_str(item.get("description"))
            and item.get("type") in LINE_ITEM_TYPES
            for item in items
        )
    )


def _estimate_fallback(inputs: JsonObject) -> JsonObject:
    category = as_str(inputs.get("category"), "General")
    return {
        "scope_of_work": (
            f"{category} service as described in the provider brief. "
            "Final scope to be confirmed after on-site assessment."
        ),
        "line_item_suggestions": [
            {"description": "Service call and diagnosis", "type": "labor"},
            {"description": "Repair/replacement work", "type": "labor"},
            {"description": "Parts and materials", "type": "material"},
        ],
        "clarifying_questions": [
            "Please confirm access to the work area",
            "Any scheduling preferences?",
        ],
        "estimated_duration_range": "To be determined after assessment",
        "warranty_considerations": ["Standard workmanship warranty applies"],
        "exclusions": ["Work outside the described scope"],
        "assumptions": ["Site conditions match the customer's description"],
    }


PROVIDER_ESTIMATE_TASK = TaskDefinition(
    task_type=TaskType.PROVIDER_ESTIMATE_DRAFT,
    capability=CapabilityGroup.PROVIDER_COPILOT,
    description="Help providers draft estimates with scope of work suggestions",
    preferred_model="gpt-4o",
    fallback_model="gpt-4o-mini",
    max_tokens=1200,
    temperature=0.4,
    build_prompt=_estimate_prompt,
    parse_output=_estimate_parse,
    validate_output=_estimate_validate,
    validate_input=_estimate_validate_input,
    get_fallback=_estimate_fallback,
    required_output_fields=("scope_of_work", "line_item_suggestions"),
    allowed_actors=(ActorRole.PROVIDER, ActorRole.SYSTEM),
)


# PROVIDER_MESSAGE_DRAFT


def _message_prompt(inputs: JsonObject) -> Prompt:
    system = """You are a communications assistant for home service providers.

Help draft professional, friendly messages to customers.

GUIDELINES:
- Keep messages concise but warm
- Use the customer's name
- Be clear about next steps
- Never include pricing in messages

Respond with JSON only."""

    context = as_choice(inputs.get("context"), MESSAGE_CONTEXTS, "update")
    user = f"""Draft a {context} message:

Customer name: {as_str(inputs.get("customer_name"), "Customer")}
Service category: {as_str(inputs.get("service_category"), "home")}
Key points to include: {", ".join(as_str_list(inputs.get("key_points"))) or "none"}

Respond in this JSON format:
{{
  "message": "The drafted message",
  "tone": "professional|friendly|urgent",
  "suggested_alternatives": ["alternative version if helpful"]
}}"""
    return Prompt(system=system, user=user)


def _message_validate_input(inputs: JsonObject) -> list[str]:
    problems = check_input(inputs, strings=("context", "customer_name", "service_category"))
    if isinstance(inputs.get("context"), str) and inputs["context"] not in MESSAGE_CONTEXTS:
        problems.append(f"context must be one of {', '.join(MESSAGE_CONTEXTS)}")
    return problems


def _message_parse(payload: JsonObject) -> JsonObject:
    return {
        "message": as_str(payload.get("message")),
        "tone": as_choice(payload.get("tone"), MESSAGE_TONES, "professional"),
        "suggested_alternatives": as_str_list(payload.get("suggested_alternatives")),
    }


def _message_validate(output: JsonObject) -> bool:
    return (
        is_non_empty_str(output.get("message"))
        and output.get("tone") in MESSAGE_TONES
        and is_str_list(output.get("suggested_alternatives"))
    )


def _message_fallback(inputs: JsonObject) -> JsonObject:
    template = _MESSAGE_TEMPLATES.get(as_str(inputs.get("context")), _MESSAGE_TEMPLATES["update"])
    return {
        "message": template.format(
            name=as_str(inputs.get("customer_name"), "there"),
            category=as_str(inputs.get("service_category"), "home"),
        ),
        "tone": "professional",
        "suggested_alternatives": [],
    }


PROVIDER_MESSAGE_TASK = TaskDefinition(
    task_type=TaskType.PROVIDER_MESSAGE_DRAFT,
    capability=CapabilityGroup.PROVIDER_COPILOT,
    description="Help providers draft professional messages to customers",
    preferred_model="gpt-4o-mini",
    fallback_model="gpt-4o-mini",
    max_tokens=600,
    temperature=0.5,
    build_prompt=_message_prompt,
    parse_output=_message_parse,
    validate_output=_message_validate,
    validate_input=_message_validate_input,
    get_fallback=_message_fallback,
    required_output_fields=("message",),
    allowed_actors=(ActorRole.PROVIDER, ActorRole.SYSTEM),
)


# INVOICE_NARRATIVE_DRAFT


def _invoice_prompt(inputs: JsonObject) -> Prompt:
    system = """You are assisting home service providers in creating professional invoice descriptions.

Write clear, detailed descriptions of completed work that:
- Clearly explain what was done
- Justify the value provided
- Are easy to understand
- Include relevant highlights and appropriate disclaimers

Respond with JSON only."""

    materials = as_str_list(inputs.get("materials_used"))
    technician = as_str(inputs.get("technician"))
    user = f"""Create an invoice narrative for this completed work:

Category: {as_str(inputs.get("category"), "general")}
Scope of work: {as_str(inputs.get("scope_of_work"))}
Work completed: {"; ".join(as_str_list(inputs.get("completed_work")))}
{f"Materials used: {', '.join(materials)}" if materials else ""}
{f"Technician: {technician}" if technician else ""}

Respond in this JSON format:
{{
  "narrative": "A detailed description of the work performed",
  "highlights": ["Key accomplishment or value point"],
  "disclaimer": "Standard disclaimer text"
}}"""
    return Prompt(system=system, user=user)


def _invoice_validate_input(inputs: JsonObject) -> list[str]:
    return check_input(
        inputs,
        strings=("category", "scope_of_work"),
        lists=("completed_work",),
    )


def _invoice_parse(payload: JsonObject) -> JsonObject:
    return {
        "narrative": as_str(payload.get("narrative")),
        "highlights": as_str_list(payload.get("highlights")),
        "disclaimer": as_str(
            payload.get("disclaimer"),
            "Work performed as described. Standard warranty applies.",
        ),
    }


def _invoice_validate(output: JsonObject) -> bool:
    return (
        is_non_empty_str(output.get("narrative"))
        and is_str_list(output.get("highlights"))
        and isinstance(output.get("disclaimer"), str)
    )


def _invoice_fallback(inputs: JsonObject) -> JsonObject:
    completed = as_str_list(inputs.get("completed_work"))
    materials = as_str_list(inputs.get("materials_used"))
    performed = "; ".join(completed) or as_str(inputs.get("scope_of_work"), "as scoped")
    narrative = (
        f"{as_str(inputs.get('category'), 'General')} service completed. "
        f"Work performed: {performed}."
    )
    if materials:
        narrative += f" Materials: {', '.join(materials)}."
    return {
        "narrative": narrative,
        "highlights": completed[:3],
        "disclaimer": DEFAULT_DISCLAIMER,
    }


INVOICE_NARRATIVE_TASK = TaskDefinition(
    task_type=TaskType.INVOICE_NARRATIVE_DRAFT,
    capability=CapabilityGroup.PROVIDER_COPILOT,
    description="Generate professional invoice narratives",
    preferred_model="gpt-4o-mini",
    fallback_model="gpt-4o-mini",
    max_tokens=800,
    temperature=0.3,
    build_prompt=_invoice_prompt,
    parse_output=_invoice_parse,
    validate_output=_invoice_validate,
    validate_input=_invoice_validate_input,
    get_fallback=_invoice_fallback,
    required_output_fields=("narrative",),
    allowed_actors=(ActorRole.PROVIDER, ActorRole.SYSTEM),
)

PROVIDER_TASKS: tuple[TaskDefinition, ...] = (
    PROVIDER_ESTIMATE_TASK,
    PROVIDER_MESSAGE_TASK,
    INVOICE_NARRATIVE_TASK,
)
