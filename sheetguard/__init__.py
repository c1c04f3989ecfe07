"""SheetGuard — Guardrail pipeline for LLM-generated spreadsheet actions.

Turns raw language-model output into a schema-valid spreadsheet action, or a
diagnosed failure, before anything reaches the spreadsheet backend.

Stages (cheapest first):
    1. Structural check     — locate and parse the JSON object
    2. Syntactic normalizer — repair near-JSON (quotes, commas, literals)
    3. Schema validator     — per-action field rules, errors vs. warnings
    4. Semantic recovery    — external service → secondary model → rules
"""

__version__ = "0.1.0"
__schema_version__ = "1.0"

from sheetguard.pipeline.orchestrator import GuardrailPipeline, build_pipeline
from sheetguard.protocol.models import PipelineResult, RequestContext

__all__ = [
    "__version__",
    "__schema_version__",
    "GuardrailPipeline",
    "PipelineResult",
    "RequestContext",
    "build_pipeline",
]
