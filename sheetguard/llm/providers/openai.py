"""LLM layer — OpenAI chat completions.

Plain ``httpx`` against ``/chat/completions``; no SDK.  Anything that speaks
the same dialect (Azure OpenAI, vLLM, LM Studio, OpenRouter) works by
pointing ``api_base_url`` at it.

Requests ask for JSON mode (``response_format: json_object``), which keeps
the reply a bare object without markdown fences.
"""

from __future__ import annotations

from typing import Any, ClassVar

from sheetguard.llm.client import LLMMessage, LLMResponse
from sheetguard.llm.providers.base import BaseHTTPLLMClient


class OpenAILLMClient(BaseHTTPLLMClient):
    """OpenAI-compatible chat completion client."""

    default_base_url = "https://api.openai.com/v1"
    default_model = "gpt-4o-mini"
    chat_path = "/chat/completions"
    response_format: ClassVar[dict[str, str] | None] = {"type": "json_object"}

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

    def build_payload(
        self,
        messages: list[LLMMessage],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if self.response_format is not None:
            payload["response_format"] = self.response_format
        return payload

    def read_reply(self, data: dict[str, Any]) -> LLMResponse:
        choices = data.get("choices") or [{}]
        usage = data.get("usage") or {}
        return LLMResponse(
            content=choices[0].get("message", {}).get("content") or "",
            model=data.get("model", self._model),
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
        )
