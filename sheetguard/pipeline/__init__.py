"""Pipeline layer — the guardrail orchestrator and its factory."""

from sheetguard.pipeline.orchestrator import GuardrailPipeline, build_pipeline, build_strategies

__all__ = ["GuardrailPipeline", "build_pipeline", "build_strategies"]
