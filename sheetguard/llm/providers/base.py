"""LLM layer — Shared plumbing for HTTP chat providers.

A provider is described mostly by class attributes (where it lives, which
model it defaults to, which path serves chat completions) plus three hooks:

  - ``auth_headers()``   — credentials for every request
  - ``build_payload()``  — the provider's request dialect
  - ``read_reply()``     — the provider's response dialect

Retries, timing and the ``httpx.AsyncClient`` lifecycle live here.  Transient
failures are retried through ``sheetguard.retry``; a 4xx answer raises
``httpx.HTTPStatusError`` straight away.
"""

from __future__ import annotations

import time
from abc import abstractmethod
from typing import Any, ClassVar

import httpx

from sheetguard.llm.client import LLMClient, LLMMessage, LLMResponse
from sheetguard.retry import RetryPolicy, send_with_retry


class BaseHTTPLLMClient(LLMClient):
    """Chat client for a JSON-over-HTTP completion API.

    Args:
        api_key:      Credential, sent the way ``auth_headers()`` decides.
        api_base_url: Overrides ``default_base_url`` (self-hosted or proxied APIs).
        model:        Overrides ``default_model``.
        timeout:      HTTP timeout in seconds (``default_timeout`` when None).
        max_retries:  Retries on transient errors (``default_max_retries`` when None).
        retry_delay:  First backoff delay in seconds.
        transport:    Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    default_base_url: ClassVar[str] = ""
    default_model: ClassVar[str] = ""
    default_timeout: ClassVar[float] = 30.0
    default_max_retries: ClassVar[int] = 2
    chat_path: ClassVar[str] = ""

    def __init__(
        self,
        *,
        api_key: str = "",
        api_base_url: str = "",
        model: str = "",
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_base_url = (api_base_url or self.default_base_url).rstrip("/")
        self._model = model or self.default_model
        self._timeout = self.default_timeout if timeout is None else timeout
        self._retry = RetryPolicy(
            max_retries=self.default_max_retries if max_retries is None else max_retries,
            delay_seconds=retry_delay,
        )
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @property
    def model(self) -> str:
        return self._model

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    @property
    def chat_url(self) -> str:
        return f"{self._api_base_url}{self.chat_path}"

    def http_client(self) -> httpx.AsyncClient:
        """The shared async HTTP client, created on first use."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"Content-Type": "application/json", **self.auth_headers()},
                transport=self._transport,
            )
        return self._http

    def auth_headers(self) -> dict[str, str]:
        return {}

    @abstractmethod
    def build_payload(
        self,
        messages: list[LLMMessage],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> dict[str, Any]:
        """Return the JSON body of a chat request in the provider's dialect."""

    @abstractmethod
    def read_reply(self, data: dict[str, Any]) -> LLMResponse:
        """Turn a decoded response body into an ``LLMResponse``."""

    async def chat(
        self,
        messages: list[LLMMessage],
        *,
        temperature: float = 0.0,
        max_tokens: int = 1024,
        timeout: float = 30.0,
    ) -> LLMResponse:
        return await self.complete(
            messages,
            model=self._model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )

    async def complete(
        self,
        messages: list[LLMMessage],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        timeout: float,
    ) -> LLMResponse:
        """One chat completion against *model*, which may differ from ``self.model``."""
        payload = self.build_payload(
            messages, model=model, temperature=temperature, max_tokens=max_tokens
        )
        started = time.monotonic()
        resp = await send_with_retry(
            self.http_client(),
            "POST",
            self.chat_url,
            self._retry,
            event="llm_provider_retry",
            log_fields={"model": model},
            json=payload,
            timeout=timeout,
        )
        resp.raise_for_status()

        data = resp.json()
        reply = self.read_reply(data)
        reply.latency_ms = round((time.monotonic() - started) * 1000, 1)
        reply.raw = data
        return reply

    async def close(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
        self._http = None
