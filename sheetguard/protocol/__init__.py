"""Protocol layer — action models, schemas, structural check, normalizer and validator."""

from sheetguard.protocol.models import (
    ActionKind,
    AppliedFix,
    NormalizationResult,
    PipelineResult,
    RecoveryAttempt,
    RecoveryMethod,
    RecoveryOutcome,
    RequestContext,
    ResultSource,
    StructuralCheckResult,
    ValidationResult,
)
from sheetguard.protocol.normalizer import SyntacticNormalizer
from sheetguard.protocol.parser import ActionParser, ParseOutcome
from sheetguard.protocol.schema import ActionSchema, FieldSpec, SchemaRegistry, get_schema_registry
from sheetguard.protocol.structural import StructuralChecker
from sheetguard.protocol.validator import (
    SchemaValidator,
    filter_row_columns,
    strip_undeclared_fields,
)

__all__ = [
    # Models
    "ActionKind",
    "ResultSource",
    "RecoveryMethod",
    "RequestContext",
    "StructuralCheckResult",
    "AppliedFix",
    "NormalizationResult",
    "ValidationResult",
    "RecoveryAttempt",
    "RecoveryOutcome",
    "PipelineResult",
    # Schemas
    "FieldSpec",
    "ActionSchema",
    "SchemaRegistry",
    "get_schema_registry",
    # Stages
    "StructuralChecker",
    "SyntacticNormalizer",
    "ActionParser",
    "ParseOutcome",
    "SchemaValidator",
    "strip_undeclared_fields",
    "filter_row_columns",
]
