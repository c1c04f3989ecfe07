"""LLM layer — Local Ollama server.

``/api/chat`` with streaming off and ``format: json``, which makes Ollama
constrain decoding to a valid JSON document.  Local models are slower to
answer and there is nothing to rate-limit, so the defaults wait longer and
retry less.
"""

from __future__ import annotations

from typing import Any

from sheetguard.llm.client import LLMMessage, LLMResponse
from sheetguard.llm.providers.base import BaseHTTPLLMClient


class OllamaLLMClient(BaseHTTPLLMClient):
    """Ollama chat client.  No authentication."""

    default_base_url = "http://localhost:11434"
    default_model = "llama3.2"
    default_timeout = 60.0
    default_max_retries = 1
    chat_path = "/api/chat"

    def build_payload(
        self,
        messages: list[LLMMessage],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> dict[str, Any]:
        return {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": False,
            "format": "json",
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }

    def read_reply(self, data: dict[str, Any]) -> LLMResponse:
        return LLMResponse(
            content=(data.get("message") or {}).get("content", ""),
            model=data.get("model", self._model),
            prompt_tokens=data.get("prompt_eval_count", 0),
            completion_tokens=data.get("eval_count", 0),
        )
