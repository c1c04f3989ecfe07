"""SheetGuard — Retry policy for outbound HTTP calls.

Both the external normalization service client and the secondary-model
providers go through ``send_with_retry``.  A request is retried when:

  - the transport fails (connection refused, read timeout, ...), or
  - the server answers with one of ``RetryPolicy.retry_statuses``.

Any other answer is returned to the caller unchanged, including 4xx errors.
Interpreting the status is the caller's job.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx

from sheetguard.logging import get_logger

log = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry a request.

    ``max_retries`` counts retries, not attempts: 0 means a single request.
    """

    max_retries: int = 2
    delay_seconds: float = 1.0
    backoff_factor: float = 2.0
    max_delay_seconds: float = 30.0
    retry_statuses: frozenset[int] = RETRYABLE_STATUS_CODES

    @property
    def attempts(self) -> int:
        return self.max_retries + 1

    def delay_for_attempt(self, attempt: int) -> float:
        """Return the delay in seconds before the *attempt*-th retry (1-indexed)."""
        return min(self.delay_seconds * (self.backoff_factor ** (attempt - 1)), self.max_delay_seconds)

    @property
    def total_delay(self) -> float:
        """Sum of the backoff delays when every retry is used."""
        return sum(self.delay_for_attempt(n) for n in range(1, self.attempts))

    def fit_timeout(self, deadline: float, ceiling: float, floor: float = 0.1) -> float:
        """Per-attempt timeout so that every attempt plus backoff ends by *deadline*.

        Never above *ceiling*.  When the backoff alone exceeds *deadline* the
        result is *floor* and the caller's deadline cuts the retries short.
        """
        share = (deadline - self.total_delay) / self.attempts
        return max(min(ceiling, share), floor)

    def is_retryable(self, response: httpx.Response) -> bool:
        return response.status_code in self.retry_statuses


async def send_with_retry(
    http: httpx.AsyncClient,
    method: str,
    url: str,
    policy: RetryPolicy,
    *,
    event: str = "http_retry",
    log_fields: dict[str, Any] | None = None,
    **request_kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying transient failures according to *policy*.

    Returns the first non-retryable response, or the last response once the
    retries are spent.  The last ``httpx.TransportError`` is re-raised when
    every attempt failed at the transport level.

    Args:
        event:      structlog event name for the retry warnings.
        log_fields: Extra fields attached to those warnings (model, path...).
    """
    fields = log_fields or {}
    attempt = 0
    while True:
        attempt += 1
        final = attempt >= policy.attempts
        try:
            response = await http.request(method, url, **request_kwargs)
        except httpx.TransportError as exc:
            if final:
                raise
            reason = str(exc) or type(exc).__name__
        else:
            if final or not policy.is_retryable(response):
                return response
            reason = f"HTTP {response.status_code}"

        delay = policy.delay_for_attempt(attempt)
        log.warning(event, reason=reason, attempt=attempt, delay=delay, **fields)
        await asyncio.sleep(delay)
