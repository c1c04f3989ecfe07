"""Protocol — Action parser.

Chains the two cheap stages that turn raw model output into a candidate
action:

  1. Structural check: locate and strictly parse a JSON object.
  2. Syntactic normalization: when (1) needed repairs or failed, run the
     fix cascade over the extracted candidate, or over the whole raw text
     when nothing was extracted.

The parser does NOT validate against the action schemas; that is the
validator's job.  It never raises.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from sheetguard.logging import get_logger
from sheetguard.protocol.models import (
    AppliedFix,
    CandidateAction,
    NormalizationResult,
    ResultSource,
    StructuralCheckResult,
)
from sheetguard.protocol.normalizer import SyntacticNormalizer
from sheetguard.protocol.structural import StructuralChecker

log = get_logger(__name__)


@dataclass
class ParseOutcome:
    """Candidate action plus the audit trail of how it was obtained."""

    success: bool
    action: CandidateAction | None = None
    source: ResultSource | None = None
    applied_fixes: list[AppliedFix] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    structural: StructuralCheckResult | None = None
    normalization: NormalizationResult | None = None


class ActionParser:
    """Stateless structural-check-then-normalize parser.

    Usage::

        outcome = ActionParser().parse('{"action": "listTabs",}')
        outcome.source      # ResultSource.NORMALIZED
        outcome.action      # {"action": "listTabs"}
    """

    def __init__(
        self,
        checker: StructuralChecker | None = None,
        normalizer: SyntacticNormalizer | None = None,
    ) -> None:
        self._checker = checker or StructuralChecker()
        self._normalizer = normalizer or SyntacticNormalizer()

    def parse(self, raw: str | dict[str, Any]) -> ParseOutcome:
        structural = self._checker.check(raw)
        if structural.strict:
            return ParseOutcome(
                success=True,
                action=structural.json_,
                source=ResultSource.DIRECT,
                structural=structural,
            )

        if not isinstance(raw, str):
            return ParseOutcome(success=False, errors=list(structural.errors), structural=structural)

        text = structural.extracted or raw
        normalization = self._normalizer.normalize(text)
        if normalization.success:
            return ParseOutcome(
                success=True,
                action=normalization.parsed,
                source=ResultSource.NORMALIZED,
                applied_fixes=list(normalization.applied_fixes),
                structural=structural,
                normalization=normalization,
            )

        # The structural repairs and the cascade differ slightly; keep the repaired parse.
        if structural.valid:
            return ParseOutcome(
                success=True,
                action=structural.json_,
                source=ResultSource.NORMALIZED,
                applied_fixes=[
                    AppliedFix(
                        fix=name,
                        description="Structural repair",
                        before=text,
                        after=json.dumps(structural.json_, ensure_ascii=False),
                    )
                    for name in structural.repairs
                ],
                structural=structural,
                normalization=normalization,
            )

        errors = [*structural.errors, *normalization.errors]
        log.debug("action_parse_failed", errors=errors)
        return ParseOutcome(
            success=False,
            errors=errors,
            applied_fixes=list(normalization.applied_fixes),
            structural=structural,
            normalization=normalization,
        )
