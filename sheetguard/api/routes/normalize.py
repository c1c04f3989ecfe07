"""POST /normalize — run the guardrail pipeline on raw model output.

A pipeline failure is a normal answer (``200`` with ``ok: false``), not an
HTTP error: callers treat it like any other normalizer verdict.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Request

from sheetguard.api.dependencies import AuthDep, ConfigDep, PipelineDep
from sheetguard.api.middleware import request_id_of
from sheetguard.api.schemas import NormalizeMetadata, NormalizeRequest, NormalizeResponse
from sheetguard.exceptions import StructuralError
from sheetguard.logging import get_logger

router = APIRouter(tags=["normalize"])
log = get_logger(__name__)


@router.post(
    "/normalize",
    response_model=NormalizeResponse,
    response_model_by_alias=True,
    summary="Normalize raw model output into a validated action",
)
async def normalize(
    body: NormalizeRequest,
    request: Request,
    pipeline: PipelineDep,
    config: ConfigDep,
    _auth: AuthDep,
) -> NormalizeResponse:
    raw = body.raw
    size = len(raw) if isinstance(raw, str) else len(json.dumps(raw))
    limit = config.server.max_raw_length
    if size > limit:
        raise StructuralError(f"Raw input exceeds {limit} characters", raw_payload=None)

    result = await pipeline.run(
        raw,
        body.request_context(),
        request_id=request_id_of(request),
    )

    metadata = NormalizeMetadata(
        source=result.source,
        action=result.validation.action,
        request_id=result.request_id,
        duration_ms=result.duration_ms,
        applied_fixes=result.applied_fixes,
        attempts=result.attempts,
    )
    if result.success:
        return NormalizeResponse(
            ok=True,
            data=result.action,
            metadata=metadata,
            warnings=result.warnings,
        )
    return NormalizeResponse(
        ok=False,
        metadata=metadata,
        warnings=result.warnings,
        error=result.error,
        errors=result.validation.errors,
        suggestions=result.suggestions,
    )
