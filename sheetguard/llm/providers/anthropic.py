"""LLM layer — Anthropic Messages API.

Two differences from the OpenAI dialect matter here:

  - system prompts travel in a top-level ``system`` field, and
  - the reply is a list of content blocks; text blocks are concatenated.
"""

from __future__ import annotations

from typing import Any

from sheetguard.llm.client import LLMMessage, LLMResponse
from sheetguard.llm.providers.base import BaseHTTPLLMClient

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicLLMClient(BaseHTTPLLMClient):
    """Anthropic Claude chat client."""

    default_base_url = "https://api.anthropic.com/v1"
    default_model = "claude-3-5-haiku-latest"
    chat_path = "/messages"

    def auth_headers(self) -> dict[str, str]:
        headers = {"anthropic-version": ANTHROPIC_VERSION}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    def build_payload(
        self,
        messages: list[LLMMessage],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> dict[str, Any]:
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [
                {"role": m.role, "content": m.content} for m in messages if m.role != "system"
            ],
        }
        if system:
            payload["system"] = system
        return payload

    def read_reply(self, data: dict[str, Any]) -> LLMResponse:
        blocks = data.get("content") or []
        usage = data.get("usage") or {}
        return LLMResponse(
            content="".join(b.get("text", "") for b in blocks if b.get("type", "text") == "text"),
            model=data.get("model", self._model),
            prompt_tokens=usage.get("input_tokens", 0),
            completion_tokens=usage.get("output_tokens", 0),
        )
