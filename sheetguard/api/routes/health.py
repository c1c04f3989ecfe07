"""GET /health — service health and capabilities."""

from __future__ import annotations

import time

from fastapi import APIRouter, Request

from sheetguard import __schema_version__, __version__
from sheetguard.api.dependencies import PipelineDep
from sheetguard.api.schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse, summary="Service health check")
async def health(request: Request, pipeline: PipelineDep) -> HealthResponse:
    return HealthResponse(
        healthy=True,
        version=__version__,
        schema_version=__schema_version__,
        uptime_seconds=round(time.monotonic() - request.app.state.started_at, 2),
        strategies=pipeline.configured_methods(),
        actions=pipeline.validator.registry.names(),
    )
