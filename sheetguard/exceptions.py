"""SheetGuard — Exception hierarchy.

Every exception raised by the package inherits from SheetGuardError so that
callers can catch the full family with a single except clause.

Expected pipeline failures (bad JSON, schema violations, exhausted recovery)
are reported through result objects, not exceptions.  The exceptions below are
raised inside the recovery strategies, by ``PipelineResult.raise_for_status``
and at startup for configuration problems.

Hierarchy:
    SheetGuardError
    ├── ProtocolError
    │   ├── StructuralError
    │   ├── ActionSyntaxError
    │   ├── SchemaError
    │   └── SchemaRegistryError
    └── RecoveryError
        ├── RecoveryExhaustedError
        ├── StrategyTimeoutError
        ├── RecoveryCancelledError
        ├── ConfigurationUnavailableError
        ├── ExternalServiceError
        ├── ModelResponseError
        └── RuleExtractionError
"""

from __future__ import annotations

from typing import Any


class SheetGuardError(Exception):
    """Base exception for all SheetGuard errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context})"


# ---------------------------------------------------------------------------
# Protocol layer
# ---------------------------------------------------------------------------


class ProtocolError(SheetGuardError):
    """Base for errors about the shape of an action payload."""


class StructuralError(ProtocolError):
    """No JSON object could be located in the raw input."""

    def __init__(self, message: str, raw_payload: str | None = None) -> None:
        super().__init__(message, context={"raw_payload": raw_payload})
        self.raw_payload = raw_payload


class ActionSyntaxError(ProtocolError):
    """A JSON-like fragment was found but could not be made parseable."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message, context={"errors": errors or []})
        self.errors = errors or []


class SchemaError(ProtocolError):
    """The candidate action does not satisfy the schema of its kind."""

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        suggestions: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            context={"errors": errors or [], "suggestions": suggestions or []},
        )
        self.errors = errors or []
        self.suggestions = suggestions or []


class SchemaRegistryError(ProtocolError):
    """An action schema definition is malformed.  Raised at startup."""


# ---------------------------------------------------------------------------
# Recovery layer
# ---------------------------------------------------------------------------


class RecoveryError(SheetGuardError):
    """Base for semantic recovery failures."""


class RecoveryExhaustedError(RecoveryError):
    """Every configured recovery strategy failed."""

    def __init__(self, message: str, attempts: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message, context={"attempts": attempts or []})
        self.attempts = attempts or []


class StrategyTimeoutError(RecoveryError):
    """A recovery strategy did not answer within its time budget."""

    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(
            f"timeout after {timeout:g}s",
            context={"method": method, "timeout": timeout},
        )
        self.method = method
        self.timeout = timeout


class ConfigurationUnavailableError(RecoveryError):
    """A recovery strategy is not configured (missing URL or credentials)."""

    def __init__(self, method: str, reason: str) -> None:
        super().__init__(f"{method} unavailable: {reason}", context={"method": method})
        self.method = method
        self.reason = reason


class ExternalServiceError(RecoveryError):
    """The external normalization service failed or answered ``ok: false``."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message, context={"status_code": status_code, "retryable": retryable})
        self.status_code = status_code
        self.retryable = retryable


class ModelResponseError(RecoveryError):
    """The secondary model replied with something that is not a JSON action."""

    def __init__(self, message: str, raw_response: str | None = None) -> None:
        super().__init__(message, context={"raw_response": raw_response})
        self.raw_response = raw_response


class RuleExtractionError(RecoveryError):
    """The rule-based extractor could not infer a required part of the action."""

    def __init__(self, message: str, missing_field: str | None = None) -> None:
        super().__init__(message, context={"missing_field": missing_field})
        self.missing_field = missing_field


class RecoveryCancelledError(RecoveryError):
    """The caller cancelled the request while a strategy was in flight."""

    def __init__(self, method: str) -> None:
        super().__init__("cancelled", context={"method": method})
        self.method = method
