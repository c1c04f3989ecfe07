"""Protocol — Canonical data models.

Every structure exchanged between pipeline stages is defined here and
validated through Pydantic v2.  This module is the single source of truth for
result shapes.  Do not add business logic here — only data shapes and their
invariants.

Candidate actions themselves stay plain ``dict[str, Any]``: they are untyped
until the schema validator has accepted them.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from sheetguard.exceptions import RecoveryExhaustedError, SchemaError

# Alias for readability in signatures.
CandidateAction = dict[str, Any]


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ActionKind(str, Enum):
    """Closed wire vocabulary of spreadsheet actions."""

    LIST_TABS = "listTabs"
    FETCH_TAB_DATA = "fetchTabData"
    UPDATE_CELL = "updateCell"
    ADD_ROW = "addRow"
    READ_RANGE = "readRange"
    DISCOVER_ALL = "discoverAll"
    BATCH = "batch"
    HEALTH = "health"


class ResultSource(str, Enum):
    """Which pipeline stage produced the final action."""

    DIRECT = "direct"
    NORMALIZED = "normalized"
    EXTERNAL = "external"
    SECONDARY_MODEL = "secondary_model"
    RULES = "rules"


class RecoveryMethod(str, Enum):
    """Semantic recovery strategies, in the order they are attempted."""

    EXTERNAL = "external"
    SECONDARY_MODEL = "secondary_model"
    RULES = "rules"

    @property
    def source(self) -> ResultSource:
        return ResultSource(self.value)


class _WireModel(BaseModel):
    """Base for models serialised to callers with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Stage results
# ---------------------------------------------------------------------------


class StructuralCheckResult(_WireModel):
    """Outcome of ``StructuralChecker.check``."""

    valid: bool
    json_: CandidateAction | None = Field(default=None, alias="json")
    errors: list[str] = Field(default_factory=list)
    extracted: str | None = Field(
        default=None,
        description="The brace-balanced substring that was parsed (None for dict input).",
    )
    repairs: list[str] = Field(
        default_factory=list,
        description="Names of the format repairs needed to parse the extracted text.",
    )

    @property
    def strict(self) -> bool:
        """True when the input parsed without any repair."""
        return self.valid and not self.repairs


class AppliedFix(_WireModel):
    """One normalizer transformation that changed the text."""

    fix: str
    description: str = ""
    before: str
    after: str


class NormalizationResult(_WireModel):
    """Outcome of ``SyntacticNormalizer.normalize``."""

    success: bool
    output: str | None = None
    parsed: CandidateAction | None = Field(default=None, exclude=True)
    applied_fixes: list[AppliedFix] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    reconstructed: bool = Field(
        default=False,
        description="True when the lossy key/value reconstruction produced the output.",
    )


class ValidationResult(_WireModel):
    """Outcome of ``SchemaValidator.validate``.  Errors make it invalid; warnings never do."""

    valid: bool
    action: str | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)

    def with_warnings(self, extra: list[str]) -> "ValidationResult":
        """Return a copy with *extra* warnings prepended (order of discovery)."""
        if not extra:
            return self
        return self.model_copy(update={"warnings": [*extra, *self.warnings]})


class RecoveryAttempt(_WireModel):
    """One semantic-recovery strategy invocation, successful or not."""

    method: RecoveryMethod
    success: bool
    json_: CandidateAction | None = Field(default=None, alias="json")
    error: str | None = None
    duration_ms: float = 0.0


class RecoveryOutcome(_WireModel):
    """Partial pipeline result returned by the Hidden Parser."""

    success: bool
    source: ResultSource | None = None
    action: CandidateAction | None = None
    validation: ValidationResult | None = None
    attempts: list[RecoveryAttempt] = Field(default_factory=list)
    error: str | None = None
    cancelled: bool = False


# ---------------------------------------------------------------------------
# Request context and terminal result
# ---------------------------------------------------------------------------


class RequestContext(_WireModel):
    """Caller-supplied hints.  Used to bias recovery, never to supply field values."""

    expected_action: ActionKind | None = None
    spreadsheet_id: str | None = None
    tab_name: str | None = None
    headers: list[str] | None = None
    validation_errors: list[str] = Field(
        default_factory=list,
        description="Errors from the last failed validation.  Filled by the orchestrator.",
    )

    @field_validator("headers")
    @classmethod
    def strip_headers(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return None
        return [h.strip() for h in v if isinstance(h, str) and h.strip()]

    def hints(self) -> dict[str, Any]:
        """Compact dict sent to remote strategies (external service, model prompt)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True, exclude_defaults=True)


class PipelineResult(_WireModel):
    """Terminal artifact of one guardrail run."""

    success: bool
    source: ResultSource | None = None
    action: CandidateAction | None = None
    validation: ValidationResult
    attempts: list[RecoveryAttempt] = Field(default_factory=list)
    error: str | None = None
    applied_fixes: list[AppliedFix] = Field(default_factory=list)
    request_id: str | None = None
    duration_ms: float = 0.0

    @property
    def warnings(self) -> list[str]:
        return self.validation.warnings

    @property
    def suggestions(self) -> list[str]:
        return self.validation.suggestions

    def raise_for_status(self) -> None:
        """Raise the exception matching a failed result.  No-op on success."""
        if self.success:
            return
        if self.attempts:
            raise RecoveryExhaustedError(
                self.error or "Recovery exhausted",
                attempts=[a.to_wire() for a in self.attempts],
            )
        raise SchemaError(
            self.error or "Action failed validation",
            errors=self.validation.errors,
            suggestions=self.validation.suggestions,
        )
