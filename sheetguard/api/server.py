"""API layer — FastAPI application factory.

``create_app()`` builds the normalization service.  Tests hand in their own
settings or a ready pipeline (for instance one whose strategies talk to an
``httpx.MockTransport``).

The service pipeline never includes the external-service strategy: an
instance configured to call itself would recurse.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sheetguard import __version__
from sheetguard.api.middleware import RequestContextMiddleware, sheetguard_error_handler
from sheetguard.api.routes import actions, health, normalize, validate
from sheetguard.config import Settings, get_settings
from sheetguard.exceptions import SheetGuardError
from sheetguard.logging import configure_logging, get_logger
from sheetguard.pipeline.orchestrator import GuardrailPipeline, build_pipeline

log = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    pipeline: GuardrailPipeline | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Settings to serve with.  ``get_settings()`` when omitted.
        pipeline: Pre-built pipeline.  Built from *settings*, without the
                  external strategy, when omitted.
    """
    settings = settings or get_settings()
    configure_logging(
        level=settings.logging.level,
        format=settings.logging.format,
        log_file=str(settings.logging.file) if settings.logging.file else None,
    )
    pipeline = pipeline or build_pipeline(settings, include_external=False)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.started_at = time.monotonic()
        log.info(
            "service_starting",
            version=__version__,
            strategies=pipeline.configured_methods(),
            auth=settings.server.api_token is not None,
        )
        try:
            yield
        finally:
            log.info("service_stopping")
            await pipeline.close()

    app = FastAPI(
        title="SheetGuard",
        description="Guardrail pipeline that turns LLM output into valid spreadsheet actions.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.pipeline = pipeline
    app.state.validator = pipeline.validator
    app.state.started_at = time.monotonic()

    app.add_middleware(RequestContextMiddleware)
    app.add_exception_handler(SheetGuardError, sheetguard_error_handler)  # type: ignore[arg-type]

    for module in (health, normalize, validate, actions):
        app.include_router(module.router)

    return app
