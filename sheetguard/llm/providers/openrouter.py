"""LLM layer — OpenRouter provider.

OpenRouter speaks the OpenAI chat-completions dialect.  On top of it this
client uses:

  - attribution headers (``HTTP-Referer``, ``X-Title``), and
  - the public model catalogue (``GET /models``), cached in an injected
    ``TTLCache``.  Configured models the catalogue no longer lists are
    skipped before anything is sent.

Models are tried primary first, then each fallback, until one answers.
"""

from __future__ import annotations

from typing import Any

import httpx

from sheetguard.llm.cache import TTLCache
from sheetguard.llm.client import LLMMessage, LLMResponse
from sheetguard.llm.providers.openai import OpenAILLMClient
from sheetguard.logging import get_logger
from sheetguard.retry import send_with_retry

log = get_logger(__name__)

_CATALOGUE_KEY = "models"


class OpenRouterLLMClient(OpenAILLMClient):
    """OpenRouter client with model fallback.

    Args:
        fallback_models: Tried in order after the primary model fails.
        model_cache:     Holds the model catalogue.  A private 5-minute cache
                         is used when omitted.
        app_name:        Sent as ``X-Title``.
        app_url:         Sent as ``HTTP-Referer`` when set.

    Remaining keyword arguments go to ``BaseHTTPLLMClient``.
    """

    default_base_url = "https://openrouter.ai/api/v1"
    default_model = "openai/gpt-4o-mini"

    def __init__(
        self,
        *,
        fallback_models: list[str] | None = None,
        model_cache: TTLCache[list[str]] | None = None,
        app_name: str = "SheetGuard",
        app_url: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._app_name = app_name
        self._app_url = app_url
        self._fallback_models = [m for m in fallback_models or [] if m != self._model]
        self._model_cache: TTLCache[list[str]] = model_cache or TTLCache(ttl_seconds=300.0)

    @property
    def model_cache(self) -> TTLCache[list[str]]:
        return self._model_cache

    def auth_headers(self) -> dict[str, str]:
        headers = {**super().auth_headers(), "X-Title": self._app_name}
        if self._app_url:
            headers["HTTP-Referer"] = self._app_url
        return headers

    async def list_models(self) -> list[str]:
        """IDs of the models OpenRouter currently serves, from cache when fresh."""
        models = self._model_cache.get(_CATALOGUE_KEY)
        if models is None:
            resp = await send_with_retry(
                self.http_client(),
                "GET",
                f"{self._api_base_url}/models",
                self._retry,
                event="openrouter_catalogue_retry",
            )
            resp.raise_for_status()
            models = [
                entry["id"]
                for entry in resp.json().get("data", [])
                if isinstance(entry, dict) and "id" in entry
            ]
            self._model_cache.put(_CATALOGUE_KEY, models)
            log.debug("openrouter_models_refreshed", count=len(models))
        return models

    async def candidate_models(self) -> list[str]:
        """Configured models in trial order, minus those OpenRouter no longer serves."""
        configured = [self._model, *self._fallback_models]
        if not self._fallback_models:
            return configured
        try:
            served = set(await self.list_models())
        except (httpx.HTTPError, ValueError) as exc:
            log.info("openrouter_catalogue_unavailable", error=str(exc) or type(exc).__name__)
            return configured
        # An empty intersection says more about the catalogue than about the models.
        return [m for m in configured if m in served] or configured

    async def chat(
        self,
        messages: list[LLMMessage],
        *,
        temperature: float = 0.0,
        max_tokens: int = 1024,
        timeout: float = 30.0,
    ) -> LLMResponse:
        failures: list[Exception] = []
        for model in await self.candidate_models():
            try:
                return await self.complete(
                    messages,
                    model=model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    timeout=timeout,
                )
            except (httpx.HTTPError, ValueError) as exc:
                failures.append(exc)
                log.warning("openrouter_model_failed", model=model, error=str(exc) or type(exc).__name__)
        raise failures[-1]

    def read_reply(self, data: dict[str, Any]) -> LLMResponse:
        # OpenRouter reports some upstream failures as HTTP 200 with an error body.
        error = data.get("error")
        if error and not data.get("choices"):
            detail = error.get("message") if isinstance(error, dict) else error
            raise ValueError(f"OpenRouter error: {detail}")
        return super().read_reply(data)
