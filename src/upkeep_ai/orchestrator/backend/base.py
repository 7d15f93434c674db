"""Backend interface for hosted model completions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from upkeep_ai.orchestrator.errors import (
    ModelHttpError,
    ModelResponseError,
    ModelTimeoutError,
    ModelUnavailableError,
)

logger = logging.getLogger(__name__)

_ERROR_BODY_PREVIEW_CHARS = 300


@dataclass(slots=True)
class CompletionRequest:
    """Inputs required to execute one model attempt."""

    model: str
    system: str
    user: str
    max_tokens: int
    temperature: float
    timeout_seconds: float
    image_urls: tuple[str, ...] = ()
    json_mode: bool = True


@dataclass(slots=True)
class CompletionResult:
    """Raw completion text and accounting returned by a provider."""

    content: str
    model: str
    input_tokens: int | None = None
    output_tokens: int | None = None


class ModelBackend(Protocol):
    """Protocol implemented by model providers."""

    name: str

    def is_available(self) -> bool:
        """True when the backend is configured to take requests."""

    def supports_vision(self) -> bool:
        """True when image URLs can be attached to the user message."""

    def complete(self, request: CompletionRequest) -> CompletionResult:
        """Run one completion, raising `ModelInvocationError` subclasses on failure."""

    def close(self) -> None:
        """Release network resources."""


class UnavailableBackend:
    """Placeholder used when no provider is configured; every call fails fast."""

    name = "none"

    def __init__(self, reason: str = "no model provider configured") -> None:
        self.reason = reason

    def is_available(self) -> bool:
        return False

    def supports_vision(self) -> bool:
        return False

    def complete(self, request: CompletionRequest) -> CompletionResult:
        raise ModelUnavailableError(f"{self.reason} (model={request.model})")

    def close(self) -> None:
        return None


class HttpModelBackend:
    """Shared httpx plumbing for JSON-over-HTTP model providers."""

    name = "http"
    model_prefixes: tuple[str, ...] = ()
    default_model = ""

    def __init__(  # noqa: PLR0913
        self,
        *,
        api_key: str | None,
        base_url: str,
        connect_timeout_seconds: float = 10.0,
        max_transport_retries: int = 0,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(30.0, connect=connect_timeout_seconds),
            headers=headers or {},
            transport=transport or httpx.HTTPTransport(retries=max_transport_retries),
        )

    def is_available(self) -> bool:
        return bool(self._api_key)

    def supports_vision(self) -> bool:
        return True

    def resolve_model(self, model: str) -> str:
        """Keep models this provider serves, map the rest to the provider default."""

        if model.startswith(self.model_prefixes):
            return model
        return self.default_model

    def _post_json(self, path: str, payload: dict[str, Any], *, timeout_seconds: float) -> Any:
        if not self.is_available():
            raise ModelUnavailableError(f"{self.name} API key is not configured")
        try:
            response = self._client.post(
                path,
                json=payload,
                timeout=httpx.Timeout(timeout_seconds, connect=self._client.timeout.connect),
            )
        except httpx.TimeoutException as exc:
            logger.warning("Timeout calling %s %s", self.name, path)
            raise ModelTimeoutError(f"{self.name} request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            logger.warning("HTTP error calling %s %s: %s", self.name, path, exc)
            raise ModelHttpError(f"{self.name} transport error: {exc}") from exc

        if not response.is_success:
            preview = response.text[:_ERROR_BODY_PREVIEW_CHARS]
            logger.warning(
                "%s returned HTTP %s for %s: %s",
                self.name,
                response.status_code,
                path,
                preview,
            )
            raise ModelHttpError(
                f"{self.name} HTTP {response.status_code}: {preview}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ModelResponseError(f"{self.name} returned a non-JSON envelope") from exc

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpModelBackend:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
