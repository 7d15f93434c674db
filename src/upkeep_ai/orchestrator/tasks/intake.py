"""Intake tasks: request classification, follow-up questions and provider briefs."""

from __future__ import annotations

import json

from upkeep_ai.orchestrator.coercion import (
    as_bool,
    as_choice,
    as_dict,
    as_dict_list,
    as_float,
    as_str,
    as_str_list,
    check_input,
    is_non_empty_str,
    is_str_list,
)
from upkeep_ai.orchestrator.models import ActorRole, CapabilityGroup, TaskType
from upkeep_ai.orchestrator.tasks.base import JsonObject, Prompt, TaskDefinition

CATEGORIES: tuple[str, ...] = (
    "hvac",
    "plumbing",
    "electrical",
    "exterior",
    "interior",
    "appliances",
    "landscaping",
    "pest_control",
    "safety",
    "general",
)
URGENCY_LEVELS: tuple[str, ...] = ("emergency", "urgent", "standard", "flexible")
CONFIDENCE_LEVELS: tuple[str, ...] = ("high", "medium", "low")
SAFETY_FLAG_TYPES: tuple[str, ...] = (
    "gas_smell",
    "electrical_sparking",
    "active_flooding",
    "structural_damage",
    "fire_hazard",
    "carbon_monoxide",
    "mold_visible",
    "asbestos_suspected",
    "water_near_electrical",
    "exposed_wiring",
)
QUESTION_TYPES: tuple[str, ...] = ("text", "select", "boolean")
BRIEF_URGENCY: tuple[str, ...] = ("low", "medium", "high", "emergency")
COMPLEXITY_LEVELS: tuple[str, ...] = ("simple", "moderate", "complex")

# keyword -> safety flag type raised when it appears in a customer description
EMERGENCY_KEYWORDS: dict[str, str | None] = {
    "gas leak": "gas_smell",
    "smell gas": "gas_smell",
    "smell of gas": "gas_smell",
    "carbon monoxide": "carbon_monoxide",
    "co alarm": "carbon_monoxide",
    "flooding": "active_flooding",
    "flooded": "active_flooding",
    "sparking": "electrical_sparking",
    "sparks": "electrical_sparking",
    "exposed wire": "exposed_wiring",
    "electrical fire": "fire_hazard",
    "sewage backup": None,
}
URGENT_KEYWORDS: tuple[str, ...] = (
    "leak",
    "no heat",
    "no hot water",
    "not cooling",
    "no power",
    "clogged",
)
_SAFETY_GUIDANCE: dict[str, str] = {
    "gas_smell": "Leave the home immediately and call your gas utility or 911 from outside.",
    "carbon_monoxide": "Get everyone outside into fresh air and call 911.",
    "active_flooding": "Shut off the main water valve if it is safe to do so.",
    "electrical_sparking": "Switch off the breaker for the affected circuit if safe.",
    "exposed_wiring": "Keep clear of the wiring and switch off the circuit at the breaker.",
    "fire_hazard": "If there is smoke or fire, leave the home and call 911.",
}
_CALL_EMERGENCY_SERVICES = frozenset({"gas_smell", "carbon_monoxide", "fire_hazard"})


def detect_emergency(text: str) -> tuple[bool, list[str]]:
    """Scan free text for emergency keywords; return (is_emergency, safety flag types)."""

    lowered = text.lower()
    flags: list[str] = []
    emergency = False
    for keyword, flag in EMERGENCY_KEYWORDS.items():
        if keyword in lowered:
            emergency = True
            if flag is not None and flag not in flags:
                flags.append(flag)
    return emergency, flags


# INTAKE_CLASSIFY_AND_SUMMARIZE


def _classify_prompt(inputs: JsonObject) -> Prompt:
    system = f"""You are an expert home maintenance analyst for a professional home maintenance platform.

Analyze images and descriptions of home issues to:
1. Summarize the visible problem concisely
2. Suggest the most appropriate service category
3. Assess urgency level
4. Identify key observations
5. Detect any safety hazards that require warnings

Never provide DIY repair instructions and never quote prices.
Use uncertainty language when appropriate ("appears to be", "may indicate").

CATEGORIES: {", ".join(CATEGORIES)}

URGENCY LEVELS:
- emergency: immediate safety risk or active damage (gas leak, flooding, sparking)
- urgent: should be addressed within 24-48 hours (water leak, no heat in winter)
- standard: normal scheduling, within a week
- flexible: can be scheduled at convenience

SAFETY FLAG TYPES: {", ".join(SAFETY_FLAG_TYPES)}

Respond with JSON only."""

    description = as_str(inputs.get("user_description"))
    user = f"""Analyze this home maintenance issue.

User's selected category: {as_str(inputs.get("category"), "general")}
{f"User's description: {description}" if description else "No description provided."}
Images attached: {len(as_str_list(inputs.get("image_urls")))}

Respond in this JSON format:
{{
  "summary": "Brief 1-2 sentence summary of the issue",
  "summary_bullets": ["Key point"],
  "suggested_category": "category from the list",
  "confidence": "high|medium|low",
  "key_observations": ["observation"],
  "urgency_level": "emergency|urgent|standard|flexible",
  "safety_flags": [
    {{
      "type": "safety flag type",
      "severity": "warning|critical",
      "description": "What was observed",
      "guidance": "What the homeowner should do",
      "recommend_emergency_services": true|false
    }}
  ]
}}"""
    return Prompt(
        system=system,
        user=user,
        image_urls=tuple(as_str_list(inputs.get("image_urls"))),
    )


def _classify_validate_input(inputs: JsonObject) -> list[str]:
    problems = check_input(inputs, strings=("category",))
    if "image_urls" in inputs and not isinstance(inputs["image_urls"], list):
        problems.append("image_urls must be a list")
    return problems


def _safety_flags(value: object) -> list[JsonObject]:
    return [
        {
            "type": as_str(item.get("type")),
            "severity": "critical" if as_str(item.get("severity")) == "critical" else "warning",
            "description": as_str(item.get("description")),
            "guidance": as_str(
                item.get("guidance"),
                "Please wait for a professional to assess.",
            ),
            "recommend_emergency_services": as_bool(item.get("recommend_emergency_services")),
        }
        for item in as_dict_list(value)
        if as_str(item.get("type")) in SAFETY_FLAG_TYPES
    ]


def _classify_parse(payload: JsonObject) -> JsonObject:
    return {
        "summary": as_str(payload.get("summary")),
        "summary_bullets": as_str_list(payload.get("summary_bullets")),
        "suggested_category": as_choice(payload.get("suggested_category"), CATEGORIES, "general"),
        "confidence": as_choice(payload.get("confidence"), CONFIDENCE_LEVELS, "low"),
        "key_observations": as_str_list(payload.get("key_observations")),
        "urgency_level": as_choice(payload.get("urgency_level"), URGENCY_LEVELS, "standard"),
        "safety_flags": _safety_flags(payload.get("safety_flags")),
    }


def _classify_validate(output: JsonObject) -> bool:
    return (
        is_non_empty_str(output.get("summary"))
        and is_non_empty_str(output.get("suggested_category"))
        and output.get("confidence") in CONFIDENCE_LEVELS
        and is_str_list(output.get("key_observations"))
        and output.get("urgency_level") in URGENCY_LEVELS
        and isinstance(output.get("safety_flags"), list)
    )


def _classify_fallback(inputs: JsonObject) -> JsonObject:
    description = as_str(inputs.get("user_description"))
    emergency, flag_types = detect_emergency(description)
    if emergency:
        urgency = "emergency"
    elif any(keyword in description.lower() for keyword in URGENT_KEYWORDS):
        urgency = "urgent"
    else:
        urgency = "standard"
    safety_flags = [
        {
            "type": flag,
            "severity": "critical",
            "description": "Reported in the customer's description",
            "guidance": _SAFETY_GUIDANCE.get(flag, "Please wait for a professional to assess."),
            "recommend_emergency_services": flag in _CALL_EMERGENCY_SERVICES,
        }
        for flag in flag_types
    ]
    category = as_str(inputs.get("category")).lower()
    return {
        "summary": "We received your service request and a specialist will review it shortly.",
        "summary_bullets": [],
        "suggested_category": category if category in CATEGORIES else "general",
        "confidence": "low",
        "key_observations": ["Manual review needed"],
        "urgency_level": urgency,
        "safety_flags": safety_flags,
    }


INTAKE_CLASSIFY_TASK = TaskDefinition(
    task_type=TaskType.INTAKE_CLASSIFY_AND_SUMMARIZE,
    capability=CapabilityGroup.INTAKE,
    description="Classify and summarize a service request from images and description",
    preferred_model="gpt-4o-mini",
    fallback_model="gpt-4o",
    max_tokens=1000,
    temperature=0.3,
    build_prompt=_classify_prompt,
    parse_output=_classify_parse,
    validate_output=_classify_validate,
    validate_input=_classify_validate_input,
    get_fallback=_classify_fallback,
    required_output_fields=("summary", "urgency_level"),
    allowed_actors=(ActorRole.CUSTOMER, ActorRole.SYSTEM),
    requires_vision=True,
)


# INTAKE_FOLLOWUP_QUESTIONS


def _question(
    question_id: str,
    text: str,
    question_type: str,
    *,
    required: bool,
    options: list[str] | None = None,
) -> JsonObject:
    item: JsonObject = {
        "id": question_id,
        "question": text,
        "type": question_type,
        "required": required,
    }
    if options is not None:
        item["options"] = options
    return item


_CATEGORY_QUESTIONS: dict[str, tuple[JsonObject, ...]] = {
    "plumbing": (
        _question(
            "q1",
            "When did you first notice this issue?",
            "select",
            required=True,
            options=["Today", "This week", "Longer than a week"],
        ),
        _question("q2", "Is there visible water damage?", "boolean", required=True),
        _question("q3", "Have you tried any fixes?", "text", required=False),
    ),
    "electrical": (
        _question("q1", "Is this affecting multiple outlets/rooms?", "boolean", required=True),
        _question(
            "q2",
            "When did this start?",
            "select",
            required=True,
            options=["Today", "This week", "Longer"],
        ),
        _question("q3", "Have you checked the breaker?", "boolean", required=False),
    ),
    "hvac": (
        _question(
            "q1",
            "Is it heating, cooling, or both?",
            "select",
            required=True,
            options=["Heating", "Cooling", "Both"],
        ),
        _question("q2", "When was the filter last changed?", "text", required=False),
        _question("q3", "Do you hear unusual noises?", "boolean", required=False),
    ),
}
_GENERIC_QUESTIONS: tuple[JsonObject, ...] = (
    _question("q1", "When did you first notice this issue?", "text", required=True),
    _question("q2", "Is this urgent?", "boolean", required=True),
    _question("q3", "Any additional details?", "text", required=False),
)


def _followup_prompt(inputs: JsonObject) -> Prompt:
    system = """You are a home maintenance intake specialist.

Generate relevant follow-up questions to gather more information about a service request.

GUIDELINES:
- Ask 3-5 relevant questions
- Questions should help the service provider understand the issue
- Mix of question types (text, select, boolean)
- Keep questions concise and clear
- Focus on practical details (when, how long, what already tried)
- Do not repeat questions that were already answered

Respond with JSON only."""

    answers = as_dict(inputs.get("existing_answers"))
    user = f"""Category: {as_str(inputs.get("category"), "general")}
Summary: {as_str(inputs.get("summary"))}
{f"Already answered: {json.dumps(answers, sort_keys=True)}" if answers else ""}

Generate follow-up questions in this JSON format:
{{
  "questions": [
    {{
      "id": "q1",
      "question": "Question text",
      "type": "text|select|boolean",
      "options": ["option1", "option2"],
      "required": true|false
    }}
  ]
}}

Only include "options" for select questions."""
    return Prompt(system=system, user=user)


def _followup_validate_input(inputs: JsonObject) -> list[str]:
    problems = check_input(inputs, strings=("category", "summary"))
    if "existing_answers" in inputs and not isinstance(inputs["existing_answers"], dict):
        problems.append("existing_answers must be an object")
    return problems


def _followup_parse(payload: JsonObject) -> JsonObject:
    questions: list[JsonObject] = []
    for index, item in enumerate(as_dict_list(payload.get("questions")), start=1):
        question_type = as_choice(item.get("type"), QUESTION_TYPES, "text")
        options = as_str_list(item.get("options")) if question_type == "select" else None
        if question_type == "select" and not options:
            question_type, options = "text", None
        questions.append(
            _question(
                as_str(item.get("id"), f"q{index}"),
                as_str(item.get("question")),
                question_type,
                required=as_bool(item.get("required")),
                options=options,
            ),
        )
    return {"questions": [q for q in questions if q["question"]]}


def _followup_validate(output: JsonObject) -> bool:
    questions = output.get("questions")
    return (
        isinstance(questions, list)
        and len(questions) > 0
        and all(
            isinstance(q, dict)
            and is_non_empty_str(q.get("id"))
            and is_non_empty_str(q.get("question"))
            and q.get("type") in QUESTION_TYPES
            for q in questions
        )
    )


def _followup_fallback(inputs: JsonObject) -> JsonObject:
    category = as_str(inputs.get("category")).lower()
    answered = set(as_dict(inputs.get("existing_answers")))
    base = _CATEGORY_QUESTIONS.get(category, _GENERIC_QUESTIONS)
    questions = [dict(q) for q in base if q["id"] not in answered]
    if not questions:
        questions = [
            _question(
                "details",
                "Is there anything else the provider should know?",
                "text",
                required=False,
            ),
        ]
    return {"questions": questions}


INTAKE_FOLLOWUP_TASK = TaskDefinition(
    task_type=TaskType.INTAKE_FOLLOWUP_QUESTIONS,
    capability=CapabilityGroup.INTAKE,
    description="Generate relevant follow-up questions based on the issue category",
    preferred_model="gpt-4o-mini",
    fallback_model="gpt-4o",
    max_tokens=800,
    temperature=0.4,
    build_prompt=_followup_prompt,
    parse_output=_followup_parse,
    validate_output=_followup_validate,
    validate_input=_followup_validate_input,
    get_fallback=_followup_fallback,
    required_output_fields=("questions",),
    allowed_actors=(ActorRole.CUSTOMER, ActorRole.SYSTEM),
)


# PROVIDER_BRIEF_GENERATE


def _brief_prompt(inputs: JsonObject) -> Prompt:
    system = """You are an expert home maintenance analyst creating provider briefs.

Analyze service requests and create comprehensive briefs for service providers.

GUIDELINES:
- Be thorough but concise and focus on actionable information
- Include safety considerations where relevant
- Never include pricing estimates
- Suggest tools/parts the technician may need
- Assess whether this could be quoted remotely or requires a site visit

Respond with JSON only."""

    details = as_dict(inputs.get("property_details"))
    property_line = ""
    if details:
        age = as_float(details.get("age"))
        sqft = as_float(details.get("sqft"))
        property_line = (
            f"Property: {as_str(details.get('type'), 'home')}, "
            f"{f'{age:.0f} years old' if age else 'age unknown'}, "
            f"{f'{sqft:.0f} sqft' if sqft else 'size unknown'}\n"
        )
    images = as_str_list(inputs.get("image_urls"))
    user = f"""Create a provider brief for this service request:

Category: {as_str(inputs.get("category"), "general")}
Summary: {as_str(inputs.get("summary"))}
Customer description: {as_str(inputs.get("user_description"), "Not provided")}
{property_line}Images attached: {len(images)}

Respond in this JSON format:
{{
  "brief_summary": "2-3 sentence professional summary",
  "key_observations": ["observation"],
  "potential_causes": ["possible cause"],
  "recommended_questions": ["question for the technician to ask"],
  "urgency_assessment": "low|medium|high|emergency",
  "estimated_complexity": "simple|moderate|complex",
  "safety_notes": ["safety consideration"],
  "suggested_tools_or_parts": ["tool or part"],
  "remote_estimate_possible": true|false,
  "site_visit_recommended": true|false
}}"""
    return Prompt(system=system, user=user, image_urls=tuple(images))


def _brief_validate_input(inputs: JsonObject) -> list[str]:
    problems = check_input(inputs, strings=("category", "summary"))
    if "image_urls" in inputs and not isinstance(inputs["image_urls"], list):
        problems.append("image_urls must be a list")
    return problems


def _brief_parse(payload: JsonObject) -> JsonObject:
    return {
        "brief_summary": as_str(payload.get("brief_summary")),
        "key_observations": as_str_list(payload.get("key_observations")),
        "potential_causes": as_str_list(payload.get("potential_causes")),
        "recommended_questions": as_str_list(payload.get("recommended_questions")),
        "urgency_assessment": as_choice(
            payload.get("urgency_assessment"),
            BRIEF_URGENCY,
            "medium",
        ),
        "estimated_complexity": as_choice(
            payload.get("estimated_complexity"),
            COMPLEXITY_LEVELS,
            "moderate",
        ),
        "safety_notes": as_str_list(payload.get("safety_notes")),
        "suggested_tools_or_parts": as_str_list(payload.get("suggested_tools_or_parts")),
        "remote_estimate_possible": as_bool(payload.get("remote_estimate_possible")),
        "site_visit_recommended": as_bool(payload.get("site_visit_recommended"), default=True),
    }


def _brief_validate(output: JsonObject) -> bool:
    return (
        is_non_empty_str(output.get("brief_summary"))
        and is_str_list(output.get("key_observations"))
        and is_str_list(output.get("potential_causes"))
        and output.get("urgency_assessment") in BRIEF_URGENCY
        and output.get("estimated_complexity") in COMPLEXITY_LEVELS
    )


def _brief_fallback(inputs: JsonObject) -> JsonObject:
    description = as_str(inputs.get("user_description"))
    _, flag_types = detect_emergency(description)
    safety_notes = ["Standard safety precautions apply"]
    safety_notes += [
        _SAFETY_GUIDANCE[flag] for flag in flag_types if flag in _SAFETY_GUIDANCE
    ]
    return {
        "brief_summary": (
            f"Service request for {as_str(inputs.get('category'), 'general')}. "
            f"Customer description: {description or 'Not provided'}. "
            "Please review attached images."
        ),
        "key_observations": ["Images require manual review"],
        "potential_causes": ["To be determined by technician on-site"],
        "recommended_questions": [
            "Ask customer about timeline",
            "Verify access to the affected area",
        ],
        "urgency_assessment": "medium",
        "estimated_complexity": "moderate",
        "safety_notes": safety_notes,
        "suggested_tools_or_parts": ["Standard toolkit for category"],
        "remote_estimate_possible": False,
        "site_visit_recommended": True,
    }


PROVIDER_BRIEF_TASK = TaskDefinition(
    task_type=TaskType.PROVIDER_BRIEF_GENERATE,
    capability=CapabilityGroup.INTAKE,
    description="Generate a comprehensive brief for service providers",
    preferred_model="gpt-4o",
    fallback_model="gpt-4o-mini",
    max_tokens=1500,
    temperature=0.3,
    build_prompt=_brief_prompt,
    parse_output=_brief_parse,
    validate_output=_brief_validate,
    validate_input=_brief_validate_input,
    get_fallback=_brief_fallback,
    required_output_fields=("brief_summary", "urgency_assessment", "estimated_complexity"),
    allowed_actors=(ActorRole.ADMIN, ActorRole.SYSTEM),
    requires_vision=True,
)

INTAKE_TASKS: tuple[TaskDefinition, ...] = (
    INTAKE_CLASSIFY_TASK,
    INTAKE_FOLLOWUP_TASK,
    PROVIDER_BRIEF_TASK,
)
