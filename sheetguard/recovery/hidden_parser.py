"""Recovery — Hidden Parser.

Runs the configured recovery strategies in order (external service, secondary
model, rules) until one yields an action that passes schema validation.

Every candidate is handled identically before validation:

  1. undeclared fields are stripped (closed objects only),
  2. ``addRow`` data is filtered against the caller's column headers,
  3. the result is validated; warnings from (1) and (2) are merged in.

Each strategy runs under its own timeout.  An ``asyncio.Event`` passed as
``cancel_event`` aborts the strategy in flight and ends recovery.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

from sheetguard.exceptions import (
    RecoveryCancelledError,
    SheetGuardError,
    StrategyTimeoutError,
)
from sheetguard.logging import get_logger
from sheetguard.protocol.models import (
    CandidateAction,
    RecoveryAttempt,
    RecoveryOutcome,
    RequestContext,
    ValidationResult,
)
from sheetguard.protocol.validator import (
    SchemaValidator,
    filter_row_columns,
    strip_undeclared_fields,
)
from sheetguard.recovery.base import RecoveryStrategy

log = get_logger(__name__)


class HiddenParser:
    """Sequential semantic recovery over a list of strategies.

    Usage::

        parser = HiddenParser([ExternalServiceStrategy(client), RuleBasedStrategy()])
        outcome = await parser.recover("update cell B5 to 42", RequestContext())
        outcome.source      # ResultSource.RULES when the service is down
    """

    def __init__(
        self,
        strategies: list[RecoveryStrategy],
        validator: SchemaValidator | None = None,
    ) -> None:
        self._strategies = list(strategies)
        self._validator = validator or SchemaValidator()

    @property
    def strategies(self) -> list[RecoveryStrategy]:
        return list(self._strategies)

    def configured_methods(self) -> list[str]:
        """Names of the strategies that would actually run, in order."""
        return [s.method.value for s in self._strategies if s.is_configured()]

    async def recover(
        self,
        raw: str | dict[str, Any],
        context: RequestContext | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> RecoveryOutcome:
        context = context or RequestContext()
        attempts: list[RecoveryAttempt] = []
        last_validation: ValidationResult | None = None

        for strategy in self._strategies:
            method = strategy.method
            if not strategy.is_configured():
                log.info(
                    "recovery_strategy_skipped",
                    method=method.value,
                    reason=strategy.unavailable_reason(),
                )
                continue

            if cancel_event is not None and cancel_event.is_set():
                return self._cancelled(attempts, last_validation)

            start = time.monotonic()
            candidate: CandidateAction | None = None
            error: str | None = None
            try:
                candidate = await self._run(strategy, raw, context, cancel_event)
            except RecoveryCancelledError as exc:
                attempts.append(
                    RecoveryAttempt(
                        method=method,
                        success=False,
                        error=exc.message,
                        duration_ms=_elapsed_ms(start),
                    )
                )
                log.info("recovery_cancelled", method=method.value)
                return self._cancelled(attempts, last_validation)
            except SheetGuardError as exc:
                error = exc.message
            except Exception as exc:  # noqa: BLE001 - any strategy failure becomes an attempt
                error = str(exc) or type(exc).__name__

            if error is None and not isinstance(candidate, dict):
                error = f"Strategy returned {type(candidate).__name__}, expected an object"
                candidate = None

            if candidate is not None:
                candidate, validation = self._check(candidate, context)
                if validation.valid:
                    attempts.append(
                        RecoveryAttempt(
                            method=method,
                            success=True,
                            json_=candidate,
                            duration_ms=_elapsed_ms(start),
                        )
                    )
                    log.info(
                        "recovery_succeeded",
                        method=method.value,
                        action=validation.action,
                        attempts=len(attempts),
                    )
                    return RecoveryOutcome(
                        success=True,
                        source=method.source,
                        action=candidate,
                        validation=validation,
                        attempts=attempts,
                    )
                last_validation = validation
                error = "Validation failed: " + "; ".join(validation.errors)

            attempts.append(
                RecoveryAttempt(
                    method=method,
                    success=False,
                    json_=candidate,
                    error=error,
                    duration_ms=_elapsed_ms(start),
                )
            )
            log.info("recovery_attempt_failed", method=method.value, error=error)

        if not attempts:
            message = "Recovery exhausted: no recovery strategy is configured"
        else:
            message = "Recovery exhausted: " + "; ".join(
                f"{a.method.value}: {a.error}" for a in attempts
            )
        log.warning("recovery_exhausted", attempts=len(attempts))
        return RecoveryOutcome(
            success=False,
            validation=last_validation,
            attempts=attempts,
            error=message,
        )

    async def close(self) -> None:
        for strategy in self._strategies:
            await strategy.close()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _check(
        self,
        candidate: CandidateAction,
        context: RequestContext,
    ) -> tuple[CandidateAction, ValidationResult]:
        stripped, strip_warnings = strip_undeclared_fields(candidate, self._validator.registry)
        filtered, column_warnings = filter_row_columns(stripped, context.headers)
        validation = self._validator.validate(filtered)
        return filtered, validation.with_warnings([*strip_warnings, *column_warnings])

    @staticmethod
    async def _run(
        strategy: RecoveryStrategy,
        raw: str | dict[str, Any],
        context: RequestContext,
        cancel_event: asyncio.Event | None,
    ) -> CandidateAction:
        """Run one strategy under its deadline, racing the cancel event."""
        task = asyncio.ensure_future(strategy.extract(raw, context))
        waiters: set[asyncio.Future[Any]] = {task}
        cancel_waiter: asyncio.Future[Any] | None = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=strategy.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None and not cancel_waiter.done():
                cancel_waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        if cancel_waiter is not None and cancel_waiter in done:
            raise RecoveryCancelledError(strategy.method.value)
        raise StrategyTimeoutError(strategy.method.value, strategy.timeout)

    @staticmethod
    def _cancelled(
        attempts: list[RecoveryAttempt],
        last_validation: ValidationResult | None,
    ) -> RecoveryOutcome:
        return RecoveryOutcome(
            success=False,
            validation=last_validation,
            attempts=attempts,
            error="Recovery cancelled",
            cancelled=True,
        )


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 1)
