"""Protocol — Syntactic normalizer.

Runs the ordered repair cascade from :mod:`sheetguard.protocol.repair` over a
near-JSON string, records every fix that changed the text, then attempts a
strict parse.

When the strict parse still fails, one **aggressive reconstruction** pass
scans the text for ``key: value`` pairs and rebuilds a flat JSON object from
them, inferring booleans, nulls and numbers.  This pass is lossy:

  - nested objects and arrays are dropped (their inner pairs may surface at
    the top level instead),
  - keys and values are taken verbatim; field names and action names are
    never corrected.

Its output therefore always goes through the schema validator, which decides
whether the result is usable.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterable

from sheetguard.logging import get_logger
from sheetguard.protocol.models import AppliedFix, NormalizationResult
from sheetguard.protocol.repair import NORMALIZER_FIXES, Repair

log = get_logger(__name__)

AGGRESSIVE_FIX = "aggressive_reconstruction"

_PAIR_RE = re.compile(
    r"""
    ["']?(?P<key>[A-Za-z_][A-Za-z0-9_]*)["']?   # key, optionally quoted
    \s*:\s*
    (?P<value>
        "(?:[^"\\]|\\.)*"                       # double-quoted string
      | '(?:[^'\\]|\\.)*'                       # single-quoted string
      | [^,{}\[\]\n"']+                         # bare token up to a delimiter
    )
    """,
    re.VERBOSE,
)

_INT_RE = re.compile(r"-?(?:0|[1-9][0-9]{0,14})")
_FLOAT_RE = re.compile(r"-?(?:0|[1-9][0-9]{0,14})\.[0-9]+(?:[eE][+-]?[0-9]+)?")


def _infer_value(token: str) -> Any:
    """Type a scanned value: quoted → str, then bool / null / number, else str."""
    token = token.strip()
    if len(token) >= 2 and token[0] == token[-1] == '"':
        try:
            return json.loads(token)
        except json.JSONDecodeError:
            return token[1:-1]
    if len(token) >= 2 and token[0] == token[-1] == "'":
        return token[1:-1].replace("\\'", "'")

    lowered = token.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered in ("null", "none", "undefined"):
        return None
    if _INT_RE.fullmatch(token):
        return int(token)
    if _FLOAT_RE.fullmatch(token):
        return float(token)
    return token


def reconstruct(text: str) -> dict[str, Any] | None:
    """Rebuild a flat object from ``key: value`` pairs.  Lossy; see module docs."""
    result: dict[str, Any] = {}
    for match in _PAIR_RE.finditer(text):
        key = match.group("key")
        if key in result:
            continue
        result[key] = _infer_value(match.group("value"))
    return result or None


class SyntacticNormalizer:
    """Repair near-JSON text into a parsed object.

    Args:
        fixes:      Ordered repairs to run.  Defaults to ``NORMALIZER_FIXES``.
        skip:       Names of fixes to leave out of the cascade.
        aggressive: Whether the lossy reconstruction pass may run.

    Usage::

        result = SyntacticNormalizer().normalize("{action: 'listTabs',}")
        result.parsed            # {"action": "listTabs"}
        [f.fix for f in result.applied_fixes]
    """

    def __init__(
        self,
        fixes: tuple[Repair, ...] = NORMALIZER_FIXES,
        *,
        skip: Iterable[str] = (),
        aggressive: bool = True,
    ) -> None:
        skipped = set(skip)
        self._fixes = tuple(f for f in fixes if f.name not in skipped)
        self._aggressive = aggressive

    @property
    def fix_names(self) -> list[str]:
        return [f.name for f in self._fixes]

    def normalize(self, text: str) -> NormalizationResult:
        if not isinstance(text, str) or not text.strip():
            return NormalizationResult(success=False, errors=["Input is empty"])

        applied: list[AppliedFix] = []
        current = text
        for fix in self._fixes:
            after = fix(current)
            if after != current:
                applied.append(
                    AppliedFix(
                        fix=fix.name,
                        description=fix.description,
                        before=current,
                        after=after,
                    )
                )
                current = after

        try:
            parsed = json.loads(current)
        except json.JSONDecodeError as exc:
            parse_error = f"JSON parse failed at line {exc.lineno}, col {exc.colno}: {exc.msg}"
        else:
            if isinstance(parsed, dict):
                return NormalizationResult(
                    success=True,
                    output=json.dumps(parsed, ensure_ascii=False),
                    parsed=parsed,
                    applied_fixes=applied,
                )
            parse_error = f"Top-level JSON value must be an object, got {type(parsed).__name__}"

        if not self._aggressive:
            return NormalizationResult(success=False, applied_fixes=applied, errors=[parse_error])

        rebuilt = reconstruct(current)
        if rebuilt is None:
            log.debug("normalizer_failed", fixes=[f.fix for f in applied], error=parse_error)
            return NormalizationResult(
                success=False,
                applied_fixes=applied,
                errors=[parse_error, "Aggressive reconstruction found no key/value pairs"],
            )

        output = json.dumps(rebuilt, ensure_ascii=False)
        applied.append(
            AppliedFix(
                fix=AGGRESSIVE_FIX,
                description="Rebuilt a flat object from key/value pairs (lossy)",
                before=current,
                after=output,
            )
        )
        log.debug("normalizer_reconstructed", keys=list(rebuilt))
        return NormalizationResult(
            success=True,
            output=output,
            parsed=rebuilt,
            applied_fixes=applied,
            reconstructed=True,
        )
