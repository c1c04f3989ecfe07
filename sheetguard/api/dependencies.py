"""API layer — FastAPI dependency injection.

The pipeline and validator are created once in ``create_app`` and stored on
``app.state``; routes receive them through the aliases below.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from sheetguard.config import Settings
from sheetguard.pipeline.orchestrator import GuardrailPipeline
from sheetguard.protocol.validator import SchemaValidator


def get_pipeline(request: Request) -> GuardrailPipeline:
    return request.app.state.pipeline  # type: ignore[no-any-return]


def get_validator(request: Request) -> SchemaValidator:
    return request.app.state.validator  # type: ignore[no-any-return]


def get_config(request: Request) -> Settings:
    return request.app.state.settings  # type: ignore[no-any-return]


async def verify_api_token(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Check ``Authorization: Bearer <token>`` when ``server.api_token`` is set."""
    settings: Settings = request.app.state.settings
    expected = settings.server.api_token

    if expected is None:
        return  # No auth configured — local-only mode.

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or token.strip() != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


# Shorthand type aliases for route signatures.
PipelineDep = Annotated[GuardrailPipeline, Depends(get_pipeline)]
ValidatorDep = Annotated[SchemaValidator, Depends(get_validator)]
ConfigDep = Annotated[Settings, Depends(get_config)]
AuthDep = Annotated[None, Depends(verify_api_token)]
