"""OpenAI chat completions backend."""

from __future__ import annotations

from typing import Any

import httpx

from upkeep_ai.orchestrator.backend.base import (
    CompletionRequest,
    CompletionResult,
    HttpModelBackend,
)
from upkeep_ai.orchestrator.errors import ModelResponseError


class OpenAIBackend(HttpModelBackend):
    """Calls `/chat/completions` with JSON response format and image URL parts."""

    name = "openai"
    model_prefixes = ("gpt-", "o1", "o3", "o4")
    default_model = "gpt-4o-mini"

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = "https://api.openai.com/v1",
        connect_timeout_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(
            api_key=api_key,
            base_url=base_url,
            connect_timeout_seconds=connect_timeout_seconds,
            headers={"Authorization": f"Bearer {api_key}"} if api_key else None,
            transport=transport,
        )

    def complete(self, request: CompletionRequest) -> CompletionResult:
        model = self.resolve_model(request.model)
        user_content: str | list[dict[str, Any]] = request.user
        if request.image_urls:
            user_content = [{"type": "text", "text": request.user}]
            user_content += [
                {"type": "image_url", "image_url": {"url": url}} for url in request.image_urls
            ]
        payload: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": request.system},
                {"role": "user", "content": user_content},
            ],
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        if request.json_mode:
            payload["response_format"] = {"type": "json_object"}

        body = self._post_json(
            "/chat/completions",
            payload,
            timeout_seconds=request.timeout_seconds,
        )
        return _parse_chat_completion(body, requested_model=model)


def _parse_chat_completion(body: Any, *, requested_model: str) -> CompletionResult:
    if not isinstance(body, dict):
        raise ModelResponseError("openai response is not a JSON object")
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ModelResponseError("openai response has no choices")
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content.strip():
        raise ModelResponseError("openai response has empty content")

    usage = body.get("usage") if isinstance(body.get("usage"), dict) else {}
    return CompletionResult(
        content=content,
        model=str(body.get("model") or requested_model),
        input_tokens=usage.get("prompt_tokens"),
        output_tokens=usage.get("completion_tokens"),
    )
