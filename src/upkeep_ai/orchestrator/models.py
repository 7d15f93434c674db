"""Domain models for AI task execution, audit and feedback."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskType(str, Enum):
    """Closed catalogue of supported AI tasks."""

    FRAUD_SIGNAL_REFERRALS = "FRAUD_SIGNAL_REFERRALS"
    PROVIDER_QUALITY_SUMMARY = "PROVIDER_QUALITY_SUMMARY"
    DISPUTE_TIMELINE_SUMMARY = "DISPUTE_TIMELINE_SUMMARY"
    CRM_NEXT_BEST_ACTION = "CRM_NEXT_BEST_ACTION"
    SPONSOR_TILE_COPY = "SPONSOR_TILE_COPY"
    INTAKE_CLASSIFY_AND_SUMMARIZE = "INTAKE_CLASSIFY_AND_SUMMARIZE"
    INTAKE_FOLLOWUP_QUESTIONS = "INTAKE_FOLLOWUP_QUESTIONS"
    PROVIDER_BRIEF_GENERATE = "PROVIDER_BRIEF_GENERATE"
    PROVIDER_ESTIMATE_DRAFT = "PROVIDER_ESTIMATE_DRAFT"
    PROVIDER_MESSAGE_DRAFT = "PROVIDER_MESSAGE_DRAFT"
    INVOICE_NARRATIVE_DRAFT = "INVOICE_NARRATIVE_DRAFT"


class CapabilityGroup(str, Enum):
    """Feature-flag keys, one per group of related tasks."""

    ADMIN_TRIAGE = "ai_admin_triage_enabled"
    CRM_COPILOT = "ai_crm_copilot_enabled"
    SPONSOR_COPY = "ai_sponsor_copy_enabled"
    INTAKE = "ai_intake_enabled"
    PROVIDER_COPILOT = "ai_provider_copilot_enabled"


class ActorRole(str, Enum):
    """Roles a task may be invoked on behalf of."""

    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"
    SYSTEM = "system"


class EntityType(str, Enum):
    """Business objects a task invocation can refer to."""

    PROVIDER = "provider"
    REFERRAL = "referral"
    PROFILE = "profile"
    CUSTOMER = "customer"
    CAMPAIGN = "campaign"
    SPONSOR = "sponsor"
    SERVICE_REQUEST = "service_request"
    BOOKING = "booking"
    ESTIMATE = "estimate"
    INVOICE = "invoice"
    DISPUTE = "dispute"
    MESSAGE_THREAD = "message_thread"
    PROPERTY = "property"
    NONE = "none"


class FailureClass(str, Enum):
    """Normalized reasons for serving a fallback instead of model output."""

    CAPABILITY_DISABLED = "capability_disabled"
    INPUT_INVALID = "input_invalid"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    RATE_LIMITED = "rate_limited"
    ACCESS_OR_AUTH = "access_or_auth"
    BACKEND_ERROR = "backend_error"
    OUTPUT_INVALID_JSON = "output_invalid_json"
    OUTPUT_VALIDATION_FAILED = "output_validation_failed"
    OUTPUT_UNSAFE = "output_unsafe"
    FALLBACK_FAILED = "fallback_failed"
    ACTOR_NOT_ALLOWED = "actor_not_allowed"


class FeedbackRating(str, Enum):
    """Thumbs up / thumbs down."""

    UP = "up"
    DOWN = "down"


class PolicyEventType(str, Enum):
    """Notable decisions taken while executing one task."""

    CAPABILITY_DISABLED = "CAPABILITY_DISABLED"
    INPUT_REJECTED = "INPUT_REJECTED"
    MODEL_RETRY = "MODEL_RETRY"
    JSON_REPAIR_NEEDED = "JSON_REPAIR_NEEDED"
    FALLBACK_USED = "FALLBACK_USED"
    FALLBACK_FAILED = "FALLBACK_FAILED"
    ACTOR_REJECTED = "ACTOR_REJECTED"
    PII_DETECTED = "PII_DETECTED"
    EMERGENCY_DETECTED = "EMERGENCY_DETECTED"
    DANGEROUS_DIY_DETECTED = "DANGEROUS_DIY_DETECTED"
    PRICING_MENTIONED = "PRICING_MENTIONED"
    LEGAL_CLAIM_DETECTED = "LEGAL_CLAIM_DETECTED"
    PROFANITY_DETECTED = "PROFANITY_DETECTED"
    OUTPUT_SANITIZED = "OUTPUT_SANITIZED"


class SafetySeverity(str, Enum):
    """How a safety finding affects the output it was found in."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(slots=True)
class PolicyEvent:
    """One executor decision, kept with the invocation for audit."""

    event_type: PolicyEventType
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.event_type.value, "details": dict(self.details)}


@dataclass(slots=True)
class TaskRequest:
    """Input to `run_task`."""

    task_type: TaskType | str
    actor_user_id: str
    entity_type: EntityType
    entity_id: str | None
    inputs: dict[str, Any]
    correlation_id: str | None = None
    timeout_seconds: float | None = None
    actor_role: ActorRole | str = ActorRole.SYSTEM
    skip_safety_checks: bool = False


@dataclass(slots=True)
class TaskResult:
    """Uniform result envelope; never raised, always returned."""

    success: bool
    used_fallback: bool
    output_json: dict[str, Any]
    correlation_id: str
    task_type: TaskType
    model: str | None = None
    latency_ms: int = 0
    attempts: int = 0
    failure_class: FailureClass | None = None
    fallback_reason: str | None = None
    policy_events: list[PolicyEvent] = field(default_factory=list)
    input_tokens: int | None = None
    output_tokens: int | None = None
    cost_usd: float | None = None


@dataclass(slots=True)
class PersistedTask:
    """Identifier handed back to callers for later feedback."""

    job_id: str
    correlation_id: str


@dataclass(slots=True)
class TaskInvocationWrite:
    """Row payload for one task invocation audit record."""

    task_type: TaskType
    actor_user_id: str
    entity_type: EntityType
    entity_id: str | None
    inputs: dict[str, Any]
    result: TaskResult
    completed_at: datetime


@dataclass(slots=True)
class TaskInvocationView:
    """Readable audit record."""

    job_id: str
    task_type: str
    actor_user_id: str
    entity_type: str
    entity_id: str | None
    inputs: dict[str, Any]
    input_hash: str
    output_json: dict[str, Any]
    used_fallback: bool
    success: bool
    correlation_id: str
    model: str | None
    latency_ms: int | None
    attempts: int
    failure_class: FailureClass | None
    fallback_reason: str | None
    policy_events: list[dict[str, Any]]
    created_at: datetime
    completed_at: datetime
    input_tokens: int | None = None
    output_tokens: int | None = None
    cost_usd: float | None = None


@dataclass(slots=True)
class FeedbackWrite:
    """Input payload for one human judgment."""

    job_id: str
    actor_user_id: str
    rating: FeedbackRating
    reason_code: str | None = None
    comment: str | None = None
    context_snapshot: dict[str, Any] | None = None


@dataclass(slots=True)
class FeedbackView:
    """Stored human judgment."""

    feedback_id: str
    job_id: str
    actor_user_id: str
    rating: FeedbackRating
    reason_code: str | None
    comment: str | None
    context_snapshot: dict[str, Any] | None
    created_at: datetime


@dataclass(slots=True)
class FeedbackStats:
    """Thumbs up/down aggregate for a task type (or all tasks)."""

    task_type: str | None
    total: int
    upvotes: int
    downvotes: int

    @property
    def upvote_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return self.upvotes / self.total


@dataclass(slots=True)
class FeatureFlagView:
    """Stored capability switch."""

    flag_key: str
    enabled: bool
    description: str | None
    updated_by: str | None
    updated_at: datetime


@dataclass(slots=True)
class TaskUsageRow:
    """Per-task invocation counters."""

    task_type: str
    total: int
    fallbacks: int
    failures: int
    avg_latency_ms: float | None
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0


@dataclass(slots=True)
class UsageSummary:
    """Invocation counters over a time window."""

    since: datetime
    total: int
    fallbacks: int
    failures: int
    by_task: list[TaskUsageRow] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0

    @property
    def fallback_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return self.fallbacks / self.total
