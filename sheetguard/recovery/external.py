"""Recovery — External normalization service.

``ExternalNormalizerClient`` talks to a remote normalization service (another
SheetGuard instance started with ``sheetguard serve`` speaks the same
protocol):

    POST {url}/normalize   {"raw": ..., "options": {...}}
        → {"ok": true,  "data": {...}, "metadata": {...}}
        → {"ok": false, "error": "...", "suggestions": [...]}
    POST {url}/validate    {"data": {...}}
    GET  {url}/health

Connection errors, read timeouts and 429/5xx answers are retried with
exponential backoff.  Everything else fails immediately.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx

from sheetguard.exceptions import ConfigurationUnavailableError, ExternalServiceError
from sheetguard.protocol.models import CandidateAction, RecoveryMethod, RequestContext
from sheetguard.recovery.base import RecoveryStrategy
from sheetguard.retry import RetryPolicy, send_with_retry


class ExternalNormalizerClient:
    """Async client for the external normalization service.

    Args:
        url:         Base URL of the service (``/normalize`` is appended).
        api_key:     Sent as ``Authorization: Bearer <key>`` when set.
        timeout:     Per-request HTTP timeout in seconds.
        max_retries: Retries on transient failures (0 = single attempt).
        retry_delay: Base delay in seconds for the backoff.
        transport:   Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        timeout: float = 15.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._retry = RetryPolicy(max_retries=max_retries, delay_seconds=retry_delay)
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @property
    def url(self) -> str:
        return self._url

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._http = httpx.AsyncClient(
                timeout=self._timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._http

    async def normalize(
        self,
        raw: str | dict[str, Any],
        *,
        context: dict[str, Any] | None = None,
        target_schema: str | None = None,
    ) -> CandidateAction:
        """Ask the service to turn *raw* into an action.  Returns ``data``.

        Raises:
            ExternalServiceError: On HTTP failure, an ``ok: false`` answer or
                                  a response without an object ``data``.
        """
        options: dict[str, Any] = {"timestamp": datetime.now(timezone.utc).isoformat()}
        if context:
            options["context"] = context
        if target_schema:
            options["targetSchema"] = target_schema

        payload = await self._request("POST", "/normalize", json={"raw": raw, "options": options})
        if not payload.get("ok"):
            error = payload.get("error") or "Service answered ok=false"
            raise ExternalServiceError(f"External normalizer rejected the input: {error}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise ExternalServiceError("External normalizer returned no action object")
        return data

    async def validate(self, data: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/validate", json={"data": data})

    async def health(self) -> dict[str, Any]:
        return await self._request("GET", "/health")

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await send_with_retry(
                self._get_http(),
                method,
                f"{self._url}{path}",
                self._retry,
                event="external_normalizer_retry",
                log_fields={"path": path},
                **kwargs,
            )
        except httpx.TransportError as exc:
            raise ExternalServiceError(
                f"External normalizer unreachable: {str(exc) or type(exc).__name__}",
                retryable=True,
            ) from exc

        if resp.status_code >= 400:
            raise ExternalServiceError(
                f"External normalizer error: HTTP {resp.status_code}",
                status_code=resp.status_code,
                retryable=self._retry.is_retryable(resp),
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise ExternalServiceError(
                "External normalizer returned invalid JSON",
                status_code=resp.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise ExternalServiceError(
                "External normalizer returned a non-object body",
                status_code=resp.status_code,
            )
        return body

    async def close(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            self._http = None


class ExternalServiceStrategy(RecoveryStrategy):
    """First recovery strategy: delegate to the external normalization service.

    ``client`` is None when no service URL is configured; the strategy then
    reports itself as unconfigured.
    """

    method = RecoveryMethod.EXTERNAL

    def __init__(self, client: ExternalNormalizerClient | None, timeout: float = 15.0) -> None:
        super().__init__(timeout)
        self._client = client

    def is_configured(self) -> bool:
        return self._client is not None

    def unavailable_reason(self) -> str:
        return "external.url is not set"

    async def extract(
        self,
        raw: str | dict[str, Any],
        context: RequestContext,
    ) -> CandidateAction:
        if self._client is None:
            raise ConfigurationUnavailableError(self.method.value, self.unavailable_reason())
        target = context.expected_action.value if context.expected_action else None
        return await self._client.normalize(raw, context=context.hints(), target_schema=target)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
