"""API layer — Request context middleware and error mapping.

Every request gets an ID (the caller's ``X-Request-ID`` when sent), which is
bound to the log context for the duration of the request, echoed back in
the response headers and reported in error bodies.  ``SheetGuardError``
subclasses escaping a route become an ``ErrorResponse`` with a stable
``code``.
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from sheetguard.api.schemas import ErrorResponse
from sheetguard.exceptions import (
    ConfigurationUnavailableError,
    ProtocolError,
    RecoveryExhaustedError,
    SchemaError,
    SheetGuardError,
)
from sheetguard.logging import bind_request_context, clear_request_context, get_logger

log = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# First match wins, so subclasses come before their parents.
_ERROR_STATUS: list[tuple[type[SheetGuardError], int, str]] = [
    (SchemaError, 422, "validation_error"),
    (ProtocolError, 400, "parse_error"),
    (RecoveryExhaustedError, 422, "recovery_exhausted"),
    (ConfigurationUnavailableError, 503, "unavailable"),
]


def request_id_of(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign the request ID, bind it for logging and log the request once done."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        request.state.request_id = request_id
        bind_request_context(request_id=request_id)
        started = time.monotonic()
        try:
            response = await call_next(request)
            log.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )
        finally:
            clear_request_context()
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def error_status(exc: SheetGuardError) -> tuple[int, str]:
    """HTTP status and error code reported for *exc*."""
    for exc_type, status_code, code in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status_code, code
    return 500, "internal_error"


async def sheetguard_error_handler(request: Request, exc: SheetGuardError) -> JSONResponse:
    status_code, code = error_status(exc)
    if status_code >= 500:
        log.error("request_failed", error=exc.message, code=code)
    body = ErrorResponse(
        error=exc.message,
        code=code,
        detail=exc.context or None,
        request_id=request_id_of(request),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())
