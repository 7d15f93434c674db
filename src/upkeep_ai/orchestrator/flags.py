"""Feature-flag gate with a short in-process TTL cache.

Flags are read through the cache and fail closed: a missing key or a storage
error reads as disabled. Writes through the gate drop the cached entry, so
the writing process sees the change at once and other processes within
`ttl_seconds`.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from upkeep_ai.orchestrator.models import CapabilityGroup, FeatureFlagView

logger = logging.getLogger(__name__)

DEFAULT_FLAG_TTL_SECONDS = 30.0

FLAG_DESCRIPTIONS: dict[CapabilityGroup, str] = {
    CapabilityGroup.ADMIN_TRIAGE: "Referral fraud, provider quality and dispute summaries",
    CapabilityGroup.CRM_COPILOT: "Next best action suggestions for provider CRM",
    CapabilityGroup.SPONSOR_COPY: "Sponsor tile copy variants",
    CapabilityGroup.INTAKE: "Service request classification, follow-ups and provider briefs",
    CapabilityGroup.PROVIDER_COPILOT: "Estimate, message and invoice narrative drafts",
}


class FeatureFlagStore(Protocol):
    """Durable flag storage used by the gate."""

    def get_enabled(self, flag_key: str) -> bool | None:
        """Stored value, or None when the key does not exist."""

    def upsert(
        self,
        *,
        flag_key: str,
        enabled: bool,
        updated_by: str | None,
        description: str | None = None,
    ) -> FeatureFlagView:
        """Create or update one flag."""

    def list_flags(self) -> list[FeatureFlagView]:
        """All stored flags ordered by key."""


@dataclass(slots=True)
class _CacheEntry:
    enabled: bool
    expires_at: float


class FeatureFlagGate:
    """Read-through TTL cache over a `FeatureFlagStore`."""

    def __init__(
        self,
        store: FeatureFlagStore,
        *,
        ttl_seconds: float = DEFAULT_FLAG_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: dict[str, _CacheEntry] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()

    def is_enabled(self, flag_key: str | CapabilityGroup) -> bool:
        key = _flag_key(flag_key)
        now = self._clock()
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None and entry.expires_at > now:
                return entry.enabled
            generation = (self._epoch, self._generations.get(key, 0))

        try:
            stored = self._store.get_enabled(key)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Feature flag lookup failed for %s; treating as disabled",
                key,
                exc_info=True,
            )
            return False

        enabled = bool(stored)
        with self._lock:
            # An invalidation during the read means the value may predate a write.
            if generation == (self._epoch, self._generations.get(key, 0)):
                self._cache[key] = _CacheEntry(
                    enabled=enabled,
                    expires_at=now + self._ttl_seconds,
                )
        return enabled

    def invalidate(self, flag_key: str | CapabilityGroup | None = None) -> None:
        with self._lock:
            if flag_key is None:
                self._cache.clear()
                self._epoch += 1
            else:
                key = _flag_key(flag_key)
                self._cache.pop(key, None)
                self._generations[key] = self._generations.get(key, 0) + 1

    def set_flag(
        self,
        flag_key: str | CapabilityGroup,
        enabled: bool,
        *,
        updated_by: str | None = None,
        description: str | None = None,
    ) -> FeatureFlagView:
        """Persist the flag and drop its cached value."""

        key = _flag_key(flag_key)
        view = self._store.upsert(
            flag_key=key,
            enabled=enabled,
            updated_by=updated_by,
            description=description,
        )
        self.invalidate(key)
        logger.info("Feature flag %s set to %s by %s", key, enabled, updated_by or "unknown")
        return view

    def list_flags(self) -> list[FeatureFlagView]:
        return self._store.list_flags()

    def seed_default_flags(
        self,
        *,
        enabled: tuple[str, ...] = (),
        updated_by: str | None = "system",
    ) -> list[str]:
        """Insert every capability flag that is not stored yet; return the created keys."""

        existing = {flag.flag_key for flag in self._store.list_flags()}
        created: list[str] = []
        for group in CapabilityGroup:
            if group.value in existing:
                continue
            self._store.upsert(
                flag_key=group.value,
                enabled=group.value in enabled,
                updated_by=updated_by,
                description=FLAG_DESCRIPTIONS.get(group),
            )
            created.append(group.value)
        if created:
            self.invalidate()
        return created


def _flag_key(flag_key: str | CapabilityGroup) -> str:
    if isinstance(flag_key, CapabilityGroup):
        return flag_key.value
    return flag_key
