"""POST /validate — schema validation of an already-built action."""

from __future__ import annotations

from fastapi import APIRouter

from sheetguard.api.dependencies import AuthDep, ValidatorDep
from sheetguard.api.schemas import ValidateRequest
from sheetguard.protocol.models import ValidationResult

router = APIRouter(tags=["validate"])


@router.post(
    "/validate",
    response_model=ValidationResult,
    response_model_by_alias=True,
    summary="Validate an action against its schema",
)
async def validate(body: ValidateRequest, validator: ValidatorDep, _auth: AuthDep) -> ValidationResult:
    return validator.validate(body.data)
