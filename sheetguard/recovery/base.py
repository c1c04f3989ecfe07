"""Recovery — Strategy interface.

A recovery strategy turns a raw instruction that the cheap stages could not
make valid into a candidate action dict.  Strategies do not validate their
own output: the Hidden Parser strips, filters and re-validates every
candidate before accepting it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from sheetguard.protocol.models import CandidateAction, RecoveryMethod, RequestContext


class RecoveryStrategy(ABC):
    """Abstract base class for semantic recovery strategies.

    Subclasses set ``method`` and implement ``extract``.  A strategy that
    cannot run (no URL, no credentials) reports ``is_configured() == False``
    and is skipped without producing an attempt.

    Args:
        timeout: Time budget in seconds for one ``extract`` call.
    """

    method: RecoveryMethod

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout

    def is_configured(self) -> bool:
        return True

    def unavailable_reason(self) -> str:
        """Human-readable reason logged when the strategy is skipped."""
        return "not configured"

    @abstractmethod
    async def extract(
        self,
        raw: str | dict[str, Any],
        context: RequestContext,
    ) -> CandidateAction:
        """Return a candidate action for *raw*.

        Raises:
            RecoveryError: (or a subclass) when no candidate can be produced.
        """
        ...

    async def close(self) -> None:
        """Release held resources.  Default: nothing to release."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(method={self.method.value!r}, timeout={self.timeout:g})"
