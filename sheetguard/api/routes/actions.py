"""GET /schemas — JSON Schema export of the action registry."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, status

from sheetguard.api.dependencies import ValidatorDep
from sheetguard.api.schemas import SchemaListResponse

router = APIRouter(prefix="/schemas", tags=["schemas"])


@router.get("", response_model=SchemaListResponse, summary="List every action schema")
async def list_schemas(validator: ValidatorDep) -> SchemaListResponse:
    registry = validator.registry
    return SchemaListResponse(actions=registry.names(), schemas=registry.to_json_schema())


@router.get("/{action}", summary="JSON Schema for one action")
async def get_schema(action: str, validator: ValidatorDep) -> dict[str, Any]:
    schema = validator.registry.to_json_schema(action)
    if not schema:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown action: {action}",
        )
    return schema
