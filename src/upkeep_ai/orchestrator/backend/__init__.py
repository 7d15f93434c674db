"""Model backends and provider selection."""

from __future__ import annotations

import logging

from upkeep_ai.config import ModelProviderSettings
from upkeep_ai.orchestrator.backend.anthropic_backend import AnthropicBackend
from upkeep_ai.orchestrator.backend.base import (
    CompletionRequest,
    CompletionResult,
    HttpModelBackend,
    ModelBackend,
    UnavailableBackend,
)
from upkeep_ai.orchestrator.backend.openai_backend import OpenAIBackend

logger = logging.getLogger(__name__)


def build_backend(settings: ModelProviderSettings) -> ModelBackend:
    """Pick the configured provider, else the first one with an API key."""

    openai = OpenAIBackend(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        connect_timeout_seconds=settings.connect_timeout_seconds,
    )
    anthropic = AnthropicBackend(
        api_key=settings.anthropic_api_key,
        base_url=settings.anthropic_base_url,
        api_version=settings.anthropic_version,
        connect_timeout_seconds=settings.connect_timeout_seconds,
    )
    candidates: dict[str, HttpModelBackend] = {"openai": openai, "anthropic": anthropic}

    chosen: ModelBackend | None = None
    if settings.provider == "none":
        chosen = UnavailableBackend("model provider disabled")
    elif settings.provider in candidates:
        chosen = candidates[settings.provider]
        if not chosen.is_available():
            logger.warning("Model provider %s selected but its API key is missing", chosen.name)
    else:
        chosen = next((backend for backend in candidates.values() if backend.is_available()), None)
        if chosen is None:
            chosen = UnavailableBackend()

    for backend in candidates.values():
        if backend is not chosen:
            backend.close()
    logger.info("Model backend: %s (available=%s)", chosen.name, chosen.is_available())
    return chosen


__all__ = [
    "AnthropicBackend",
    "CompletionRequest",
    "CompletionResult",
    "ModelBackend",
    "OpenAIBackend",
    "UnavailableBackend",
    "build_backend",
]
