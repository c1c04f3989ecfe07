"""Pipeline — Guardrail orchestrator.

State machine for one raw instruction:

    START → STRUCTURAL → NORMALIZE → VALIDATE → DONE
                                        └ fail → RECOVER → (re-validated) → DONE

  - A strict structural parse becomes the candidate with ``source=direct``.
  - Anything that needed repair, or that had no parseable object, goes
    through the normalizer (``source=normalized``).
  - Parse failure goes straight to RECOVER.  Validation failure goes to
    RECOVER with the original raw input and the validation errors attached
    to the request context.
  - The Hidden Parser validates its own output, so RECOVER is entered at
    most once.

The orchestrator never executes actions.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Any

import httpx

from sheetguard.config import Settings
from sheetguard.llm.cache import TTLCache
from sheetguard.llm.providers import build_provider
from sheetguard.logging import bind_request_context, get_logger, pipeline_stage
from sheetguard.protocol.models import (
    AppliedFix,
    PipelineResult,
    RequestContext,
    ValidationResult,
)
from sheetguard.protocol.parser import ActionParser
from sheetguard.protocol.schema import SchemaRegistry, get_schema_registry
from sheetguard.protocol.validator import SchemaValidator, filter_row_columns
from sheetguard.recovery.base import RecoveryStrategy
from sheetguard.recovery.external import ExternalNormalizerClient, ExternalServiceStrategy
from sheetguard.recovery.hidden_parser import HiddenParser
from sheetguard.recovery.rules import RuleBasedStrategy
from sheetguard.recovery.secondary_model import SecondaryModelStrategy
from sheetguard.retry import RetryPolicy

log = get_logger(__name__)

_PARSE_FAILURE_SUGGESTION = (
    'Return the action as a JSON object, e.g. {"action": "updateCell", "range": "B5", '
    '"data": {"value": 42}}'
)


class GuardrailPipeline:
    """Turn raw model output into a validated action, or a diagnosed failure.

    Args:
        parser:        Structural check + normalizer.  Defaults to ``ActionParser()``.
        validator:     Schema validator.  Defaults to the built-in registry.
        hidden_parser: Recovery loop.  Defaults to rules only.

    Usage::

        pipeline = GuardrailPipeline()
        result = await pipeline.run('{"action": "listTabs",}')
        result.success, result.source      # True, ResultSource.NORMALIZED
    """

    def __init__(
        self,
        *,
        parser: ActionParser | None = None,
        validator: SchemaValidator | None = None,
        hidden_parser: HiddenParser | None = None,
    ) -> None:
        self._parser = parser or ActionParser()
        self._validator = validator or SchemaValidator()
        self._hidden_parser = hidden_parser or HiddenParser(
            [RuleBasedStrategy(self._validator.registry)],
            self._validator,
        )

    @property
    def validator(self) -> SchemaValidator:
        return self._validator

    @property
    def hidden_parser(self) -> HiddenParser:
        return self._hidden_parser

    def configured_methods(self) -> list[str]:
        return self._hidden_parser.configured_methods()

    async def run(
        self,
        raw: str | dict[str, Any],
        context: RequestContext | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        request_id: str | None = None,
    ) -> PipelineResult:
        """Run the guardrail on *raw*.  Never raises for bad input."""
        context = context or RequestContext()
        request_id = request_id or uuid.uuid4().hex[:12]
        bind_request_context(request_id=request_id)
        start = time.monotonic()

        with pipeline_stage("parse"):
            parsed = self._parser.parse(raw)
        applied_fixes: list[AppliedFix] = list(parsed.applied_fixes)

        if parsed.success and parsed.action is not None:
            with pipeline_stage("validate"):
                candidate, column_warnings = filter_row_columns(parsed.action, context.headers)
                validation = self._validator.validate(candidate).with_warnings(column_warnings)
            if validation.valid:
                log.info(
                    "pipeline_completed",
                    source=parsed.source.value if parsed.source else None,
                    action=validation.action,
                    fixes=[f.fix for f in applied_fixes],
                )
                return PipelineResult(
                    success=True,
                    source=parsed.source,
                    action=candidate,
                    validation=validation,
                    applied_fixes=applied_fixes,
                    request_id=request_id,
                    duration_ms=_elapsed_ms(start),
                )
            log.info("pipeline_validation_failed", errors=validation.errors)
            context = context.model_copy(update={"validation_errors": list(validation.errors)})
        else:
            validation = ValidationResult(
                valid=False,
                errors=list(parsed.errors),
                suggestions=[_PARSE_FAILURE_SUGGESTION],
            )
            log.info("pipeline_parse_failed", errors=parsed.errors)

        with pipeline_stage("recover"):
            outcome = await self._hidden_parser.recover(raw, context, cancel_event=cancel_event)

        if outcome.success and outcome.validation is not None:
            log.info(
                "pipeline_completed",
                source=outcome.source.value if outcome.source else None,
                action=outcome.validation.action,
                attempts=len(outcome.attempts),
            )
            return PipelineResult(
                success=True,
                source=outcome.source,
                action=outcome.action,
                validation=outcome.validation,
                attempts=outcome.attempts,
                applied_fixes=applied_fixes,
                request_id=request_id,
                duration_ms=_elapsed_ms(start),
            )

        log.warning(
            "pipeline_failed",
            error=outcome.error,
            attempts=len(outcome.attempts),
            cancelled=outcome.cancelled,
        )
        return PipelineResult(
            success=False,
            validation=outcome.validation or validation,
            attempts=outcome.attempts,
            error=outcome.error,
            applied_fixes=applied_fixes,
            request_id=request_id,
            duration_ms=_elapsed_ms(start),
        )

    def run_sync(
        self,
        raw: str | dict[str, Any],
        context: RequestContext | None = None,
    ) -> PipelineResult:
        """Blocking wrapper around ``run`` for callers without an event loop."""
        return asyncio.run(self.run(raw, context))

    async def close(self) -> None:
        await self._hidden_parser.close()


def build_strategies(
    settings: Settings,
    registry: SchemaRegistry | None = None,
    *,
    include_external: bool = True,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[RecoveryStrategy]:
    """Create the recovery strategies in attempt order from *settings*.

    Unconfigured strategies are still included; the Hidden Parser skips them
    and logs why.
    """
    registry = registry or get_schema_registry()
    strategies: list[RecoveryStrategy] = []

    if include_external:
        ext = settings.external
        policy = RetryPolicy(max_retries=ext.max_retries, delay_seconds=ext.retry_delay_seconds)
        client = (
            ExternalNormalizerClient(
                ext.url,
                api_key=ext.api_key,
                timeout=policy.fit_timeout(ext.strategy_timeout_seconds, ceiling=ext.timeout_seconds),
                max_retries=ext.max_retries,
                retry_delay=ext.retry_delay_seconds,
                transport=transport,
            )
            if ext.url
            else None
        )
        strategies.append(ExternalServiceStrategy(client, timeout=ext.strategy_timeout_seconds))

    model = settings.secondary_model
    strategies.append(
        SecondaryModelStrategy(
            build_provider(
                model,
                model_cache=TTLCache(ttl_seconds=model.model_cache_ttl_seconds),
                transport=transport,
            ),
            registry,
            temperature=model.temperature,
            max_tokens=model.max_tokens,
            timeout=model.timeout_seconds,
        )
    )

    strategies.append(
        RuleBasedStrategy(
            registry,
            timeout=settings.rules.timeout_seconds,
            enabled=settings.rules.enabled,
        )
    )
    return strategies


def build_pipeline(
    settings: Settings,
    *,
    registry: SchemaRegistry | None = None,
    include_external: bool = True,
    transport: httpx.AsyncBaseTransport | None = None,
) -> GuardrailPipeline:
    """Wire a ``GuardrailPipeline`` from configuration.

    ``include_external=False`` builds a pipeline that never calls the external
    normalization service; the HTTP server uses it so that it cannot call
    itself.
    """
    registry = registry or get_schema_registry()
    validator = SchemaValidator(registry)
    strategies = build_strategies(
        settings,
        registry,
        include_external=include_external,
        transport=transport,
    )
    pipeline = GuardrailPipeline(
        validator=validator,
        hidden_parser=HiddenParser(strategies, validator),
    )
    log.debug("pipeline_built", strategies=pipeline.configured_methods())
    return pipeline


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 1)
