"""Admin triage tasks: referral fraud signals, provider quality, dispute timelines."""

from __future__ import annotations

import json
from typing import Any

from upkeep_ai.orchestrator.coercion import (
    as_bool,
    as_choice,
    as_dict,
    as_dict_list,
    as_float,
    as_int,
    as_str,
    as_str_list,
    check_input,
    clamp,
    is_non_empty_str,
    is_number,
    is_str_list,
)
from upkeep_ai.orchestrator.models import ActorRole, CapabilityGroup, TaskType
from upkeep_ai.orchestrator.tasks.base import JsonObject, Prompt, TaskDefinition

SEVERITIES: tuple[str, ...] = ("low", "medium", "high")
RECOMMENDATIONS: tuple[str, ...] = ("approve", "review", "reject")
PROVIDER_TIERS: tuple[str, ...] = ("basic", "verified", "preferred")
TIER_ACTIONS: tuple[str, ...] = ("promote", "maintain", "demote")
RISK_LEVELS: tuple[str, ...] = ("low", "medium", "high")
TIMELINE_RELEVANCE: tuple[str, ...] = ("key", "supporting", "context")

APPROVE_MAX_SCORE = 30
REVIEW_MAX_SCORE = 60

FRAUD_BASE_SCORE = 10
VELOCITY_24H_HIGH = 10
VELOCITY_24H_MEDIUM = 5
VELOCITY_7D_HIGH = 25
BURST_GAP_MINUTES = 5.0
BURST_MIN_REFERRALS = 3
SHARED_IP_MIN = 3
SHARED_DEVICE_MIN = 2
SHARED_ADDRESS_MIN = 2
SHARED_EMAIL_DOMAIN_MIN = 5
LOW_CONVERSION_MIN_REFERRALS = 10
LOW_CONVERSION_RATE = 0.05

PREFERRED_TIER_THRESHOLDS: dict[str, float] = {
    "min_rating": 4.5,
    "min_completed_jobs": 10,
    "max_dispute_rate": 0.05,
    "max_response_time_hours": 4,
    "max_cancellation_rate": 0.10,
    "min_on_time_rate": 0.85,
}
_TIER_BELOW = {"preferred": "verified", "verified": "basic", "basic": "basic"}


def recommendation_for_score(score: float) -> str:
    """Map a 0-100 risk score to approve / review / reject."""

    if score <= APPROVE_MAX_SCORE:
        return "approve"
    if score <= REVIEW_MAX_SCORE:
        return "review"
    return "reject"


# FRAUD_SIGNAL_REFERRALS


def _fraud_prompt(inputs: JsonObject) -> Prompt:
    system = """You are a fraud detection analyst for a home-maintenance marketplace referral program.

Analyze referral data for potential fraud signals such as:
- Self-referrals
- Velocity abuse (too many referrals too quickly)
- Pattern matching (shared email domains, IPs, devices, addresses)
- Unusual conversion patterns

Provide a risk score from 0-100 where:
- 0-30: Low risk, approve
- 31-60: Medium risk, review
- 61-100: High risk, reject/investigate

Be precise and evidence-based. Never recommend banning a user; humans decide.

Respond with JSON only."""

    time_patterns = as_dict(inputs.get("time_patterns"))
    user = f"""Analyze this referrer:

Referrer: {as_str(inputs.get("referrer_id"))}
Total referrals: {as_int(inputs.get("referral_count"))}
Conversion rate: {as_float(inputs.get("conversion_rate")) * 100:.1f}%
Signups in last 24h: {as_int(time_patterns.get("signups_last_24h"))}
Signups in last 7 days: {as_int(time_patterns.get("signups_last_7d"))}
Average minutes between signups: {as_float(time_patterns.get("avg_minutes_between_signups")):.1f}
Cluster hashes: {json.dumps(as_dict(inputs.get("cluster_data")), sort_keys=True)}
Referrals sharing each hash: {json.dumps(as_dict(inputs.get("cluster_matches")), sort_keys=True)}

Respond in this JSON format:
{{
  "risk_score": 0-100,
  "signals": [
    {{ "type": "signal_type", "severity": "low|medium|high", "description": "explanation" }}
  ],
  "recommendation": "approve|review|reject",
  "review_notes": "Additional context for reviewers"
}}"""
    return Prompt(system=system, user=user)


def _fraud_validate_input(inputs: JsonObject) -> list[str]:
    return check_input(
        inputs,
        strings=("referrer_id",),
        mappings=("time_patterns",),
        numbers=("time_patterns.signups_last_24h", "time_patterns.signups_last_7d"),
    )


def _signals(value: object) -> list[dict[str, str]]:
    return [
        {
            "type": as_str(item.get("type"), "unknown"),
            "severity": as_choice(item.get("severity"), SEVERITIES, "medium"),
            "description": as_str(item.get("description")),
        }
        for item in as_dict_list(value)
    ]


def _fraud_parse(payload: JsonObject) -> JsonObject:
    score = round(clamp(as_float(payload.get("risk_score"), 50.0), 0, 100))
    return {
        "risk_score": score,
        "signals": _signals(payload.get("signals")),
        "recommendation": as_choice(
            payload.get("recommendation"),
            RECOMMENDATIONS,
            recommendation_for_score(score),
        ),
        "review_notes": as_str(payload.get("review_notes")),
    }


def _fraud_validate(output: JsonObject) -> bool:
    score = output.get("risk_score")
    signals = output.get("signals")
    return (
        is_number(score)
        and 0 <= score <= 100  # noqa: PLR2004
        and isinstance(signals, list)
        and all(
            isinstance(item, dict) and item.get("severity") in SEVERITIES for item in signals
        )
        and output.get("recommendation") in RECOMMENDATIONS
        and isinstance(output.get("review_notes"), str)
    )


def _fraud_fallback(inputs: JsonObject) -> JsonObject:  # noqa: C901
    time_patterns = as_dict(inputs.get("time_patterns"))
    matches = as_dict(inputs.get("cluster_matches"))
    signups_24h = as_float(time_patterns.get("signups_last_24h"))
    signups_7d = max(as_float(time_patterns.get("signups_last_7d")), signups_24h)
    avg_gap = as_float(time_patterns.get("avg_minutes_between_signups"))
    referral_count = as_float(inputs.get("referral_count"))
    conversion_rate = as_float(inputs.get("conversion_rate"))

    score = FRAUD_BASE_SCORE
    signals: list[dict[str, str]] = []

    if signups_24h >= VELOCITY_24H_HIGH:
        score += 40
        signals.append(
            _signal("velocity_24h", "high", f"{int(signups_24h)} signups in the last 24 hours"),
        )
    elif signups_24h >= VELOCITY_24H_MEDIUM:
        score += 20
        signals.append(
            _signal("velocity_24h", "medium", f"{int(signups_24h)} signups in the last 24 hours"),
        )
    if signups_7d >= VELOCITY_7D_HIGH:
        score += 20
        signals.append(
            _signal("velocity_7d", "medium", f"{int(signups_7d)} signups in the last 7 days"),
        )
    if 0 < avg_gap < BURST_GAP_MINUTES and referral_count >= BURST_MIN_REFERRALS:
        score += 15
        signals.append(
            _signal(
                "burst_timing",
                "medium",
                f"Signups arrive on average {avg_gap:.1f} minutes apart",
            ),
        )

    for key, threshold, points, severity, label in (
        ("ip", SHARED_IP_MIN, 15, "medium", "IP cluster"),
        ("device", SHARED_DEVICE_MIN, 20, "high", "device fingerprint"),
        ("address", SHARED_ADDRESS_MIN, 10, "medium", "address"),
        ("email_domain", SHARED_EMAIL_DOMAIN_MIN, 5, "low", "email domain"),
    ):
        shared = as_float(matches.get(key))
        if shared >= threshold:
            score += points
            signals.append(
                _signal(f"shared_{key}", severity, f"{int(shared)} referrals share one {label}"),
            )

    if referral_count >= LOW_CONVERSION_MIN_REFERRALS and conversion_rate < LOW_CONVERSION_RATE:
        score += 10
        signals.append(
            _signal(
                "low_conversion",
                "low",
                f"{conversion_rate * 100:.1f}% conversion across {int(referral_count)} referrals",
            ),
        )

    score = int(clamp(score, 0, 100))
    recommendation = recommendation_for_score(score)
    if not signals:
        signals.append(
            _signal("rule_based_screen", "low", "No rule-based fraud indicators triggered"),
        )
        notes = "Rule-based screening found no strong fraud indicators."
    else:
        notes = (
            f"Rule-based screening triggered {len(signals)} signal(s). "
            "Automated analysis unavailable; manual review recommended before any action."
        )
    return {
        "risk_score": score,
        "signals": signals,
        "recommendation": recommendation,
        "review_notes": notes,
    }


def _signal(signal_type: str, severity: str, description: str) -> dict[str, str]:
    return {"type": signal_type, "severity": severity, "description": description}


FRAUD_SIGNAL_TASK = TaskDefinition(
    task_type=TaskType.FRAUD_SIGNAL_REFERRALS,
    capability=CapabilityGroup.ADMIN_TRIAGE,
    description="Analyze referral patterns for potential fraud signals",
    preferred_model="gpt-4o",
    fallback_model="gpt-4o-mini",
    max_tokens=800,
    temperature=0.1,
    build_prompt=_fraud_prompt,
    parse_output=_fraud_parse,
    validate_output=_fraud_validate,
    validate_input=_fraud_validate_input,
    get_fallback=_fraud_fallback,
    required_output_fields=("risk_score", "signals", "recommendation"),
    allowed_actors=(ActorRole.ADMIN, ActorRole.SYSTEM),
)


# PROVIDER_QUALITY_SUMMARY


def _quality_prompt(inputs: JsonObject) -> Prompt:
    system = """You are a marketplace quality analyst reviewing home service providers.

Summarize provider performance in plain language for an admin reviewer:
- List concrete strengths and concerns backed by the metrics
- Assess overall risk (low, medium, high)
- Suggest whether the provider tier should be promoted, maintained or demoted

Tier changes are always decided by a human. Set human_review_required to true
whenever you suggest a tier change or see high risk.

Respond with JSON only."""

    metrics = as_dict(inputs.get("metrics"))
    issues = as_str_list(inputs.get("recent_issues"))
    issues_block = "\n".join(f"- {issue}" for issue in issues) or "- None reported"
    user = f"""Provider: {as_str(inputs.get("provider_name"), "Unknown Provider")}
Current tier: {as_str(inputs.get("current_tier"), "basic")}

Metrics:
- Average rating: {as_float(metrics.get("rating")):.1f}/5
- Total jobs: {as_int(metrics.get("total_jobs"))}
- Dispute rate: {as_float(metrics.get("dispute_rate")) * 100:.1f}%
- Cancellation rate: {as_float(metrics.get("cancellation_rate")) * 100:.1f}%
- Average response time: {as_float(metrics.get("avg_response_time_hours")):.1f} hours
- On-time rate: {as_float(metrics.get("on_time_rate")) * 100:.1f}%

Recent issues:
{issues_block}

Preferred-tier thresholds: {json.dumps(PREFERRED_TIER_THRESHOLDS, sort_keys=True)}

Respond in this JSON format:
{{
  "summary": "2-3 sentence plain-language summary",
  "strengths": ["strength"],
  "concerns": ["concern"],
  "risk_level": "low|medium|high",
  "tier_recommendation": {{
    "recommended_tier": "basic|verified|preferred",
    "action": "promote|maintain|demote",
    "reasoning": "why"
  }},
  "human_review_required": true|false
}}"""
    return Prompt(system=system, user=user)


def _quality_validate_input(inputs: JsonObject) -> list[str]:
    return check_input(
        inputs,
        strings=("provider_id", "provider_name"),
        mappings=("metrics",),
        numbers=("metrics.rating", "metrics.total_jobs", "metrics.dispute_rate"),
    )


def _tier_recommendation(value: object, *, fallback_tier: str) -> dict[str, str]:
    data = as_dict(value)
    return {
        "recommended_tier": as_choice(data.get("recommended_tier"), PROVIDER_TIERS, fallback_tier),
        "action": as_choice(data.get("action"), TIER_ACTIONS, "maintain"),
        "reasoning": as_str(data.get("reasoning")),
    }


def _quality_parse(payload: JsonObject) -> JsonObject:
    tier = _tier_recommendation(payload.get("tier_recommendation"), fallback_tier="basic")
    risk_level = as_choice(payload.get("risk_level"), RISK_LEVELS, "medium")
    return {
        "summary": as_str(payload.get("summary")),
        "strengths": as_str_list(payload.get("strengths")),
        "concerns": as_str_list(payload.get("concerns")),
        "risk_level": risk_level,
        "tier_recommendation": tier,
        "human_review_required": as_bool(
            payload.get("human_review_required"),
            default=tier["action"] != "maintain" or risk_level == "high",
        ),
    }


def _quality_validate(output: JsonObject) -> bool:
    tier = output.get("tier_recommendation")
    return (
        is_non_empty_str(output.get("summary"))
        and is_str_list(output.get("strengths"))
        and is_str_list(output.get("concerns"))
        and output.get("risk_level") in RISK_LEVELS
        and isinstance(tier, dict)
        and tier.get("recommended_tier") in PROVIDER_TIERS
        and tier.get("action") in TIER_ACTIONS
        and isinstance(output.get("human_review_required"), bool)
    )


def _quality_fallback(inputs: JsonObject) -> JsonObject:  # noqa: C901, PLR0912
    metrics = as_dict(inputs.get("metrics"))
    name = as_str(inputs.get("provider_name"), "Provider")
    current_tier = as_choice(inputs.get("current_tier"), PROVIDER_TIERS, "basic")
    rating = as_float(metrics.get("rating"))
    total_jobs = as_int(metrics.get("total_jobs"))
    dispute_rate = as_float(metrics.get("dispute_rate"))
    cancellation_rate = as_float(metrics.get("cancellation_rate"))
    response_hours = as_float(metrics.get("avg_response_time_hours"))
    on_time_rate = as_float(metrics.get("on_time_rate"))
    issues = as_str_list(inputs.get("recent_issues"))
    limits = PREFERRED_TIER_THRESHOLDS

    strengths: list[str] = []
    concerns: list[str] = []
    if rating >= limits["min_rating"]:
        strengths.append(f"Strong customer rating ({rating:.1f}/5)")
    if total_jobs >= limits["min_completed_jobs"]:
        strengths.append(f"Established track record ({total_jobs} jobs)")
    if total_jobs > 0 and dispute_rate <= limits["max_dispute_rate"]:
        strengths.append(f"Low dispute rate ({dispute_rate * 100:.1f}%)")
    if 0 < response_hours <= limits["max_response_time_hours"]:
        strengths.append(f"Responsive to customers ({response_hours:.1f}h average)")
    if total_jobs > 0 and on_time_rate >= limits["min_on_time_rate"]:
        strengths.append(f"Reliable punctuality ({on_time_rate * 100:.0f}% on time)")

    if total_jobs > 0 and rating < 4.0:  # noqa: PLR2004
        concerns.append(f"Below-average rating ({rating:.1f}/5)")
    if dispute_rate > 2 * limits["max_dispute_rate"]:
        concerns.append(f"High dispute rate ({dispute_rate * 100:.1f}%)")
    elif dispute_rate > limits["max_dispute_rate"]:
        concerns.append(f"Elevated dispute rate ({dispute_rate * 100:.1f}%)")
    if cancellation_rate > limits["max_cancellation_rate"]:
        concerns.append(f"Cancellation rate above target ({cancellation_rate * 100:.1f}%)")
    if total_jobs > 0 and on_time_rate < 0.7:  # noqa: PLR2004
        concerns.append(f"Frequent late arrivals ({on_time_rate * 100:.0f}% on time)")
    if response_hours > 24:  # noqa: PLR2004
        concerns.append(f"Slow response time ({response_hours:.1f}h average)")
    if issues:
        concerns.append(f"{len(issues)} recent issue(s) reported")

    if (
        dispute_rate > 2 * limits["max_dispute_rate"]
        or (total_jobs > 0 and rating < 3.5)  # noqa: PLR2004
        or len(concerns) >= 3  # noqa: PLR2004
    ):
        risk_level = "high"
    elif concerns:
        risk_level = "medium"
    else:
        risk_level = "low"

    meets_preferred = (
        rating >= limits["min_rating"]
        and total_jobs >= limits["min_completed_jobs"]
        and dispute_rate <= limits["max_dispute_rate"]
        and response_hours <= limits["max_response_time_hours"]
    )
    if risk_level == "high" and current_tier != "basic":
        recommended, action = _TIER_BELOW[current_tier], "demote"
        reasoning = "High-risk indicators warrant a lower tier pending review."
    elif meets_preferred and current_tier != "preferred":
        recommended, action = "preferred", "promote"
        reasoning = "Meets every preferred-tier threshold."
    elif current_tier == "preferred" and not meets_preferred:
        recommended, action = "verified", "demote"
        reasoning = "No longer meets all preferred-tier thresholds."
    else:
        recommended, action = current_tier, "maintain"
        reasoning = "Metrics are consistent with the current tier."

    summary = (
        f"{name} has {total_jobs} job(s) on record with a {rating:.1f}/5 average rating. "
        f"Rule-based assessment: {risk_level} risk, {len(strengths)} strength(s) and "
        f"{len(concerns)} concern(s)."
    )
    return {
        "summary": summary,
        "strengths": strengths,
        "concerns": concerns,
        "risk_level": risk_level,
        "tier_recommendation": {
            "recommended_tier": recommended,
            "action": action,
            "reasoning": reasoning,
        },
        "human_review_required": action != "maintain" or risk_level == "high",
    }


PROVIDER_QUALITY_TASK = TaskDefinition(
    task_type=TaskType.PROVIDER_QUALITY_SUMMARY,
    capability=CapabilityGroup.ADMIN_TRIAGE,
    description="Summarize provider quality metrics with tier guidance for admins",
    preferred_model="gpt-4o",
    fallback_model="gpt-4o-mini",
    max_tokens=1000,
    temperature=0.2,
    build_prompt=_quality_prompt,
    parse_output=_quality_parse,
    validate_output=_quality_validate,
    validate_input=_quality_validate_input,
    get_fallback=_quality_fallback,
    required_output_fields=("summary", "risk_level", "tier_recommendation"),
    allowed_actors=(ActorRole.ADMIN, ActorRole.SYSTEM),
)


# DISPUTE_TIMELINE_SUMMARY


def _dispute_prompt(inputs: JsonObject) -> Prompt:
    system = """You are a dispute resolution analyst for a home-maintenance marketplace.

Your role is to:
1. Summarize dispute details objectively
2. Create a clear timeline of events
3. Identify key issues
4. Suggest appropriate actions

Be completely neutral, focus on documented facts and flag gaps in documentation.

Respond with JSON only."""

    events = "\n".join(
        f"- {as_str(event.get('timestamp'))}: [{as_str(event.get('type'))}] "
        f"{as_str(event.get('description'))} (by {as_str(event.get('actor'), 'unknown')})"
        for event in as_dict_list(inputs.get("events"))
    )
    user = f"""Analyze this dispute:

Reason: {as_str(inputs.get("dispute_reason"))}
Invoice amount: ${as_float(inputs.get("invoice_amount")):.2f}
Disputed amount: ${as_float(inputs.get("disputed_amount")):.2f}

Events:
{events or "- No events recorded"}

Respond in this JSON format:
{{
  "summary": "Objective summary of the dispute",
  "timeline": [
    {{ "date": "YYYY-MM-DD", "event": "Description", "relevance": "key|supporting|context" }}
  ],
  "key_issues": ["Issue"],
  "recommended_actions": ["Action"]
}}"""
    return Prompt(system=system, user=user)


def _dispute_validate_input(inputs: JsonObject) -> list[str]:
    return check_input(
        inputs,
        strings=("dispute_reason",),
        lists=("events",),
        numbers=("invoice_amount", "disputed_amount"),
    )


def _dispute_parse(payload: JsonObject) -> JsonObject:
    return {
        "summary": as_str(payload.get("summary")),
        "timeline": [
            {
                "date": as_str(item.get("date")),
                "event": as_str(item.get("event")),
                "relevance": as_choice(item.get("relevance"), TIMELINE_RELEVANCE, "context"),
            }
            for item in as_dict_list(payload.get("timeline"))
        ],
        "key_issues": as_str_list(payload.get("key_issues")),
        "recommended_actions": as_str_list(payload.get("recommended_actions")),
    }


def _dispute_validate(output: JsonObject) -> bool:
    return (
        is_non_empty_str(output.get("summary"))
        and isinstance(output.get("timeline"), list)
        and is_str_list(output.get("key_issues"))
        and is_str_list(output.get("recommended_actions"))
    )


def _dispute_fallback(inputs: JsonObject) -> JsonObject:
    invoice_amount = as_float(inputs.get("invoice_amount"))
    disputed_amount = as_float(inputs.get("disputed_amount"))
    timeline: list[dict[str, Any]] = [
        {
            "date": as_str(event.get("timestamp")).split("T")[0],
            "event": f"{as_str(event.get('type'), 'event')}: {as_str(event.get('description'))}",
            "relevance": "context",
        }
        for event in as_dict_list(inputs.get("events"))
    ]
    key_issues = ["Manual review required"]
    if invoice_amount > 0 and disputed_amount >= invoice_amount:
        key_issues.append("Full invoice amount is disputed")
    if not timeline:
        key_issues.append("No documented events on file")
    return {
        "summary": (
            f"Dispute filed: {as_str(inputs.get('dispute_reason'), 'reason not provided')}. "
            f"Amount in dispute: ${disputed_amount:.2f} of ${invoice_amount:.2f} total."
        ),
        "timeline": timeline,
        "key_issues": key_issues,
        "recommended_actions": ["Review all documentation", "Contact both parties"],
    }


DISPUTE_TIMELINE_TASK = TaskDefinition(
    task_type=TaskType.DISPUTE_TIMELINE_SUMMARY,
    capability=CapabilityGroup.ADMIN_TRIAGE,
    description="Summarize dispute events and create an actionable timeline",
    preferred_model="gpt-4o",
    fallback_model="gpt-4o-mini",
    max_tokens=1200,
    temperature=0.2,
    build_prompt=_dispute_prompt,
    parse_output=_dispute_parse,
    validate_output=_dispute_validate,
    validate_input=_dispute_validate_input,
    get_fallback=_dispute_fallback,
    required_output_fields=("summary", "timeline"),
    allowed_actors=(ActorRole.ADMIN, ActorRole.SYSTEM),
)

ADMIN_TASKS: tuple[TaskDefinition, ...] = (
    FRAUD_SIGNAL_TASK,
    PROVIDER_QUALITY_TASK,
    DISPUTE_TIMELINE_TASK,
)
