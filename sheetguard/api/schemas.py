"""API layer — Request and response schemas.

These are the external API contracts of the normalization service.  They
are kept separate from the protocol models so the wire format can evolve
without touching the pipeline.  Keys are camelCase on the wire.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from sheetguard.protocol.models import (
    ActionKind,
    AppliedFix,
    RecoveryAttempt,
    RequestContext,
    ResultSource,
)


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class NormalizeOptions(_ApiModel):
    context: RequestContext | None = None
    target_schema: ActionKind | None = Field(
        default=None,
        description="Expected action kind; used when the context carries none.",
    )
    timestamp: str | None = Field(default=None, description="Client timestamp (informational).")


class NormalizeRequest(_ApiModel):
    """POST /normalize — Turn raw model output into a validated action."""

    raw: str | dict[str, Any] = Field(description="Raw model output, as text or a parsed object.")
    options: NormalizeOptions = Field(default_factory=NormalizeOptions)

    def request_context(self) -> RequestContext:
        context = self.options.context or RequestContext()
        if context.expected_action is None and self.options.target_schema is not None:
            context = context.model_copy(update={"expected_action": self.options.target_schema})
        return context


class ValidateRequest(_ApiModel):
    """POST /validate — Validate an already-built action."""

    data: dict[str, Any]


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class NormalizeMetadata(_ApiModel):
    source: ResultSource | None = None
    action: str | None = None
    request_id: str | None = None
    duration_ms: float = 0.0
    applied_fixes: list[AppliedFix] = Field(default_factory=list)
    attempts: list[RecoveryAttempt] = Field(default_factory=list)


class NormalizeResponse(_ApiModel):
    ok: bool
    data: dict[str, Any] | None = None
    metadata: NormalizeMetadata | None = None
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None
    errors: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class HealthResponse(_ApiModel):
    healthy: bool = True
    version: str
    schema_version: str
    uptime_seconds: float
    strategies: list[str] = Field(description="Recovery strategies this instance can run.")
    actions: list[str] = Field(description="Action kinds accepted by the validator.")


class SchemaListResponse(_ApiModel):
    actions: list[str]
    schemas: dict[str, Any]


class ErrorResponse(BaseModel):
    error: str
    code: str
    detail: Any | None = None
    request_id: str | None = None
