"""Anthropic messages API backend."""

from __future__ import annotations

from typing import Any

import httpx

from upkeep_ai.orchestrator.backend.base import (
    CompletionRequest,
    CompletionResult,
    HttpModelBackend,
)
from upkeep_ai.orchestrator.errors import ModelResponseError


class AnthropicBackend(HttpModelBackend):
    """Calls `/messages`; JSON output is requested through the system prompt."""

    name = "anthropic"
    model_prefixes = ("claude-",)
    default_model = "claude-haiku-4-5-20251001"

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = "https://api.anthropic.com/v1",
        api_version: str = "2023-06-01",
        connect_timeout_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"anthropic-version": api_version}
        if api_key:
            headers["x-api-key"] = api_key
        super().__init__(
            api_key=api_key,
            base_url=base_url,
            connect_timeout_seconds=connect_timeout_seconds,
            headers=headers,
            transport=transport,
        )

    def complete(self, request: CompletionRequest) -> CompletionResult:
        model = self.resolve_model(request.model)
        content: list[dict[str, Any]] = [
            {"type": "image", "source": {"type": "url", "url": url}} for url in request.image_urls
        ]
        content.append({"type": "text", "text": request.user})
        payload = {
            "model": model,
            "system": request.system,
            "messages": [{"role": "user", "content": content}],
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        body = self._post_json("/messages", payload, timeout_seconds=request.timeout_seconds)
        return _parse_message(body, requested_model=model)


def _parse_message(body: Any, *, requested_model: str) -> CompletionResult:
    if not isinstance(body, dict):
        raise ModelResponseError("anthropic response is not a JSON object")
    blocks = body.get("content")
    texts = [
        block["text"]
        for block in blocks or []
        if isinstance(block, dict) and block.get("type") == "text" and "text" in block
    ]
    text = "".join(texts)
    if not text.strip():
        raise ModelResponseError("anthropic response has no text content")

    usage = body.get("usage") if isinstance(body.get("usage"), dict) else {}
    return CompletionResult(
        content=text,
        model=str(body.get("model") or requested_model),
        input_tokens=usage.get("input_tokens"),
        output_tokens=usage.get("output_tokens"),
    )
