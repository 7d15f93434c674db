"""Sequential fraud review over a batch of referrals.

Never bans anyone: each referral gets a risk score and a recommendation that
a human reviewer acts on.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from upkeep_ai.orchestrator.coercion import as_float, as_str
from upkeep_ai.orchestrator.models import CapabilityGroup, EntityType, TaskRequest, TaskType
from upkeep_ai.storage.common import from_iso, utc_now

if TYPE_CHECKING:
    from upkeep_ai.orchestrator.gateway import AiGateway

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 50
DEFAULT_DELAY_SECONDS = 0.1
DEFAULT_HIGH_RISK_THRESHOLD = 61
_HASH_PREFIX_CHARS = 12


@dataclass(slots=True)
class ReferralRecord:
    """One referral signup as exported from the referral program."""

    referral_id: str
    referrer_id: str
    created_at: datetime
    referee_email: str | None = None
    converted: bool = False
    ip_hash: str | None = None
    device_hash: str | None = None
    address_hash: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ReferralRecord:
        created_at = raw.get("created_at")
        if not isinstance(created_at, str) or not created_at.strip():
            raise ValueError(f"referral {raw.get('referral_id')!r} has no created_at")
        return cls(
            referral_id=str(raw["referral_id"]),
            referrer_id=str(raw["referrer_id"]),
            created_at=from_iso(created_at),
            referee_email=raw.get("referee_email"),
            converted=bool(raw.get("converted", False)),
            ip_hash=raw.get("ip_hash"),
            device_hash=raw.get("device_hash"),
            address_hash=raw.get("address_hash"),
        )

    def cluster_hashes(self) -> dict[str, str]:
        hashes = {
            "ip": self.ip_hash or "",
            "device": self.device_hash or "",
            "address": self.address_hash or "",
            "email_domain": email_domain_hash(self.referee_email),
        }
        return {key: value for key, value in hashes.items() if value}


@dataclass(slots=True)
class FraudReviewItem:
    referral_id: str
    success: bool
    used_fallback: bool = False
    risk_score: int | None = None
    recommendation: str | None = None
    job_id: str | None = None
    error: str | None = None


@dataclass(slots=True)
class FraudReviewSummary:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    high_risk: int = 0
    skipped_reason: str | None = None
    results: list[FraudReviewItem] = field(default_factory=list)


def email_domain_hash(email: str | None) -> str:
    """Short digest of the email domain; the raw address never reaches the model."""

    if not email or "@" not in email:
        return ""
    domain = email.rsplit("@", 1)[1].strip().lower()
    if not domain:
        return ""
    return hashlib.sha256(domain.encode("utf-8")).hexdigest()[:_HASH_PREFIX_CHARS]


def build_fraud_signal_input(
    target: ReferralRecord,
    referrer_referrals: Sequence[ReferralRecord],
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Aggregate a referrer's history into fraud-signal task inputs."""

    current = now or utc_now()
    history = sorted(referrer_referrals, key=lambda item: item.created_at)
    last_24h = current - timedelta(hours=24)
    last_7d = current - timedelta(days=7)

    gaps = [
        (later.created_at - earlier.created_at).total_seconds() / 60.0
        for earlier, later in zip(history, history[1:], strict=False)
    ]
    converted = sum(1 for item in history if item.converted)

    target_hashes = target.cluster_hashes()
    matches = {
        key: sum(1 for item in history if item.cluster_hashes().get(key) == value)
        for key, value in target_hashes.items()
    }
    return {
        "referrer_id": target.referrer_id,
        "referral_count": len(history),
        "conversion_rate": converted / len(history) if history else 0.0,
        "cluster_data": target_hashes,
        "cluster_matches": matches,
        "time_patterns": {
            "signups_last_24h": sum(1 for item in history if item.created_at > last_24h),
            "signups_last_7d": sum(1 for item in history if item.created_at > last_7d),
            "avg_minutes_between_signups": round(sum(gaps) / len(gaps), 2) if gaps else 0.0,
        },
    }


def run_fraud_review_batch(  # noqa: PLR0913
    gateway: AiGateway,
    referrals: Sequence[ReferralRecord],
    *,
    actor_user_id: str = "system",
    delay_seconds: float = DEFAULT_DELAY_SECONDS,
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
    high_risk_threshold: int = DEFAULT_HIGH_RISK_THRESHOLD,
    now: datetime | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> FraudReviewSummary:
    """Score up to `max_batch_size` referrals one at a time."""

    summary = FraudReviewSummary()
    if not gateway.is_feature_enabled(CapabilityGroup.ADMIN_TRIAGE):
        summary.skipped_reason = "AI admin triage is disabled"
        logger.info("Fraud review batch skipped: %s", summary.skipped_reason)
        return summary

    by_referrer: dict[str, list[ReferralRecord]] = {}
    for referral in referrals:
        by_referrer.setdefault(referral.referrer_id, []).append(referral)

    batch = list(referrals)[:max_batch_size]
    for index, referral in enumerate(batch):
        if index > 0 and delay_seconds > 0:
            sleep(delay_seconds)
        summary.processed += 1
        try:
            item = _review_one(
                gateway,
                referral,
                by_referrer[referral.referrer_id],
                actor_user_id=actor_user_id,
                now=now,
            )
        except Exception as error:  # noqa: BLE001
            logger.warning("Fraud review failed for referral %s: %s", referral.referral_id, error)
            item = FraudReviewItem(
                referral_id=referral.referral_id,
                success=False,
                error=str(error),
            )

        summary.results.append(item)
        if not item.success:
            summary.failed += 1
            continue
        summary.successful += 1
        if item.risk_score is not None and item.risk_score >= high_risk_threshold:
            summary.high_risk += 1

    logger.info(
        "Fraud review batch processed=%d successful=%d failed=%d high_risk=%d",
        summary.processed,
        summary.successful,
        summary.failed,
        summary.high_risk,
    )
    return summary


def _review_one(
    gateway: AiGateway,
    referral: ReferralRecord,
    referrer_referrals: list[ReferralRecord],
    *,
    actor_user_id: str,
    now: datetime | None,
) -> FraudReviewItem:
    inputs = build_fraud_signal_input(referral, referrer_referrals, now=now)
    result, persisted = gateway.run_and_record(
        TaskRequest(
            task_type=TaskType.FRAUD_SIGNAL_REFERRALS,
            actor_user_id=actor_user_id,
            entity_type=EntityType.REFERRAL,
            entity_id=referral.referral_id,
            inputs=inputs,
        ),
    )
    if not result.success:
        return FraudReviewItem(
            referral_id=referral.referral_id,
            success=False,
            job_id=persisted.job_id if persisted else None,
            error=result.fallback_reason or "fraud signal task failed",
        )
    return FraudReviewItem(
        referral_id=referral.referral_id,
        success=True,
        used_fallback=result.used_fallback,
        risk_score=int(as_float(result.output_json.get("risk_score"))),
        recommendation=as_str(result.output_json.get("recommendation")) or None,
        job_id=persisted.job_id if persisted else None,
    )
