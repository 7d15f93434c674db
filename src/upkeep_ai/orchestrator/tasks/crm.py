"""CRM copilot task: next best action for a provider's customer."""

from __future__ import annotations

from datetime import date, datetime

from upkeep_ai.orchestrator.coercion import (
    as_choice,
    as_dict,
    as_dict_list,
    as_float,
    as_int,
    as_str,
    as_str_list,
    check_input,
    clamp,
    is_number,
)
from upkeep_ai.orchestrator.models import ActorRole, CapabilityGroup, TaskType
from upkeep_ai.orchestrator.tasks.base import JsonObject, Prompt, TaskDefinition

ACTION_TYPES: tuple[str, ...] = (
    "follow_up_call",
    "send_message",
    "schedule_service",
    "offer_discount",
    "request_review",
    "send_maintenance_reminder",
    "upsell_service",
    "win_back",
    "thank_you",
)
RISK_TYPES: tuple[str, ...] = ("churn", "dissatisfaction", "missed_opportunity", "overdue_service")
PRIORITIES: tuple[str, ...] = ("high", "medium", "low")

BASE_HEALTH_SCORE = 70
CHURN_AFTER_DAYS = 180
OVERDUE_AFTER_DAYS = 90
SATISFIED_MIN_RATING = 4.0
LOYAL_MIN_JOBS = 3
MAX_DUE_IN_DAYS = 30


def _prompt(inputs: JsonObject) -> Prompt:
    system = """You are a CRM assistant for a home-maintenance platform.

Analyze customer data and provide actionable suggestions for the service provider to:
- Improve customer satisfaction and retention
- Identify and mitigate churn risks
- Spot upsell and cross-sell opportunities

Include ready-to-use message templates and practical timing (due_in_days 0-30).

PROHIBITED:
- Never suggest aggressive sales tactics
- Never recommend contacting customers excessively
- Never suggest discounts below cost

Respond with JSON only."""

    history = as_dict(inputs.get("customer_history"))
    interactions = as_str_list(inputs.get("recent_interactions"))
    lines = [
        f"Customer: {as_str(inputs.get('customer_name'), 'Customer')} "
        f"(ID: {as_str(inputs.get('customer_id'))})",
        "",
        "Customer history:",
        f"- Member since: {as_str(history.get('member_since'), 'unknown')}",
        f"- Total jobs: {as_int(history.get('total_jobs'))}",
        f"- Total spend: ${as_float(history.get('total_spend')):.2f}",
        f"- Last job date: {as_str(history.get('last_job_date'), 'unknown')}",
        f"- Average rating given: {as_float(history.get('avg_rating')):.1f}/5",
    ]
    if as_str(history.get("subscription_tier")):
        lines.append(f"- Subscription: {as_str(history.get('subscription_tier'))}")
    lines += ["", "Recent interactions:"]
    lines += [f"- {item}" for item in interactions] or ["- No recent interactions"]

    booking = as_dict(inputs.get("booking_context"))
    if booking:
        lines += [
            "",
            "Current booking:",
            f"- Service: {as_str(booking.get('service_category'), 'general')}",
            f"- Status: {as_str(booking.get('status'), 'unknown')}",
        ]
        if as_str(booking.get("completed_date")):
            lines.append(f"- Completed: {as_str(booking.get('completed_date'))}")
    categories = as_str_list(inputs.get("provider_categories"))
    if categories:
        lines += ["", f"Provider's service categories: {', '.join(categories)}"]
    if as_str(inputs.get("as_of")):
        lines += ["", f"Today's date: {as_str(inputs.get('as_of'))}"]

    lines += [
        "",
        "Respond in this JSON format:",
        """{
  "next_actions": [
    {
      "action_type": "follow_up_call|send_message|schedule_service|offer_discount|request_review|send_maintenance_reminder|upsell_service|win_back|thank_you",
      "suggested_message": "Ready-to-use message text",
      "due_in_days": 0-30,
      "reason": "Why this action is recommended",
      "priority": "high|medium|low"
    }
  ],
  "risks": [
    { "type": "churn|dissatisfaction|missed_opportunity|overdue_service", "description": "...", "severity": "high|medium|low" }
  ],
  "upsell_opportunities": [
    { "service": "Service name", "reason": "Why this is a good fit", "estimated_value": "$X-$Y" }
  ],
  "customer_health_score": 0-100
}""",
    ]
    return Prompt(system=system, user="\n".join(lines))


def _validate_input(inputs: JsonObject) -> list[str]:
    problems = check_input(
        inputs,
        strings=("customer_id", "customer_name", "customer_history.last_job_date"),
        mappings=("customer_history",),
        numbers=("customer_history.total_jobs", "customer_history.avg_rating"),
    )
    as_of = inputs.get("as_of")
    if as_of is not None and _parse_day(as_of) is None:
        problems.append("as_of must be an ISO date")
    return problems


def _parse(payload: JsonObject) -> JsonObject:
    return {
        "next_actions": [
            {
                "action_type": as_choice(item.get("action_type"), ACTION_TYPES, "send_message"),
                "suggested_message": as_str(item.get("suggested_message")),
                "due_in_days": int(
                    clamp(as_float(item.get("due_in_days"), 7.0), 0, MAX_DUE_IN_DAYS),
                ),
                "reason": as_str(item.get("reason")),
                "priority": as_choice(item.get("priority"), PRIORITIES, "medium"),
            }
            for item in as_dict_list(payload.get("next_actions"))
        ],
        "risks": [
            {
                "type": as_choice(item.get("type"), RISK_TYPES, "missed_opportunity"),
                "description": as_str(item.get("description")),
                "severity": as_choice(item.get("severity"), PRIORITIES, "medium"),
            }
            for item in as_dict_list(payload.get("risks"))
        ],
        "upsell_opportunities": [
            {
                "service": as_str(item.get("service")),
                "reason": as_str(item.get("reason")),
                "estimated_value": as_str(item.get("estimated_value")),
            }
            for item in as_dict_list(payload.get("upsell_opportunities"))
        ],
        "customer_health_score": int(
            clamp(as_float(payload.get("customer_health_score"), 50.0), 0, 100),
        ),
    }


def _validate(output: JsonObject) -> bool:
    actions = output.get("next_actions")
    score = output.get("customer_health_score")
    return (
        isinstance(actions, list)
        and len(actions) > 0
        and all(
            isinstance(action, dict) and action.get("action_type") in ACTION_TYPES
            for action in actions
        )
        and isinstance(output.get("risks"), list)
        and isinstance(output.get("upsell_opportunities"), list)
        and is_number(score)
        and 0 <= score <= 100  # noqa: PLR2004
    )


def _fallback(inputs: JsonObject) -> JsonObject:
    history = as_dict(inputs.get("customer_history"))
    name = as_str(inputs.get("customer_name"), "there")
    avg_rating = as_float(history.get("avg_rating"))
    total_jobs = as_float(history.get("total_jobs"))
    as_of = _parse_day(inputs.get("as_of")) or date.today()
    last_job = _parse_day(history.get("last_job_date"))
    days_since_last_job = (as_of - last_job).days if last_job is not None else None

    next_actions: list[JsonObject] = []
    risks: list[JsonObject] = []
    upsells: list[JsonObject] = []
    health_score = BASE_HEALTH_SCORE

    if days_since_last_job is not None and days_since_last_job > CHURN_AFTER_DAYS:
        health_score -= 30
        risks.append(
            {
                "type": "churn",
                "description": f"Customer has not had a service in {days_since_last_job} days",
                "severity": "high",
            },
        )
        next_actions.append(
            _action(
                "win_back",
                f"Hi {name}! We noticed it's been a while since your last service. Is there "
                "anything we can help with around the house? We'd love to keep your home in "
                "great shape.",
                due_in_days=3,
                reason="High churn risk - long time since last engagement",
                priority="high",
            ),
        )
    elif days_since_last_job is not None and days_since_last_job > OVERDUE_AFTER_DAYS:
        health_score -= 15
        risks.append(
            {
                "type": "overdue_service",
                "description": "Customer may have seasonal maintenance needs",
                "severity": "medium",
            },
        )
        next_actions.append(
            _action(
                "send_maintenance_reminder",
                f"Hi {name}! Just checking in - with the season changing, it might be a good "
                "time to schedule some routine maintenance. Let us know if we can help!",
                due_in_days=7,
                reason="Proactive seasonal outreach opportunity",
                priority="medium",
            ),
        )

    if avg_rating < SATISFIED_MIN_RATING:
        health_score -= 20
        risks.append(
            {
                "type": "dissatisfaction",
                "description": (
                    f"Customer's average rating ({avg_rating:.1f}) indicates potential issues"
                ),
                "severity": "high",
            },
        )
        next_actions.append(
            _action(
                "follow_up_call",
                f"Hi {name}, I wanted to personally check in and see how we can better serve "
                "you. Your feedback is really important to us.",
                due_in_days=1,
                reason="Address potential dissatisfaction before churn",
                priority="high",
            ),
        )

    booking = as_dict(inputs.get("booking_context"))
    if as_str(booking.get("status")).lower() == "completed":
        category = as_str(booking.get("service_category"), "home")
        next_actions.append(
            _action(
                "request_review",
                f"Hi {name}! Thank you for choosing us for your recent {category} service. "
                "We'd really appreciate it if you could share your experience with a quick "
                "review!",
                due_in_days=2,
                reason="Capture feedback while experience is fresh",
                priority="medium",
            ),
        )

    if not next_actions:
        next_actions.append(
            _action(
                "send_message",
                f"Hi {name}! Just wanted to check in and see if there's anything we can help "
                "with. We're always here for your home maintenance needs!",
                due_in_days=14,
                reason="Maintain regular engagement",
                priority="low",
            ),
        )

    if total_jobs >= LOYAL_MIN_JOBS and avg_rating >= SATISFIED_MIN_RATING:
        upsells.append(
            {
                "service": "Annual Maintenance Plan",
                "reason": (
                    "Loyal customer with positive history - good candidate for recurring service"
                ),
                "estimated_value": "$200-$500/year",
            },
        )

    return {
        "next_actions": next_actions,
        "risks": risks,
        "upsell_opportunities": upsells,
        "customer_health_score": max(0, health_score),
    }


def _action(
    action_type: str,
    message: str,
    *,
    due_in_days: int,
    reason: str,
    priority: str,
) -> JsonObject:
    return {
        "action_type": action_type,
        "suggested_message": message,
        "due_in_days": due_in_days,
        "reason": reason,
        "priority": priority,
    }


def _parse_day(value: object) -> date | None:
    text = as_str(value)
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


CRM_NEXT_ACTION_TASK = TaskDefinition(
    task_type=TaskType.CRM_NEXT_BEST_ACTION,
    capability=CapabilityGroup.CRM_COPILOT,
    description=(
        "Suggest next best actions for customer engagement with risks and upsell opportunities"
    ),
    preferred_model="gpt-4o",
    fallback_model="gpt-4o-mini",
    max_tokens=1200,
    temperature=0.4,
    build_prompt=_prompt,
    parse_output=_parse,
    validate_output=_validate,
    validate_input=_validate_input,
    get_fallback=_fallback,
    required_output_fields=("next_actions", "customer_health_score"),
    allowed_actors=(ActorRole.PROVIDER, ActorRole.ADMIN, ActorRole.SYSTEM),
)

CRM_TASKS: tuple[TaskDefinition, ...] = (CRM_NEXT_ACTION_TASK,)
