"""Protocol — Structural pre-check.

Cheapest stage of the pipeline: decide whether the raw instruction contains a
JSON object and pull it out.

Extraction is brace-balanced (string-literal aware), not a greedy regex, so
``use {"a": 1} or {"b": 2}`` yields two separate candidates instead of one
unparseable span.  Candidates are tried in order with a strict parse; if none
parses, a bounded set of repairs is applied to the first candidate only and
the result is parsed once more.

``StructuralChecker.check`` never raises.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from typing import Any

from sheetguard.logging import get_logger
from sheetguard.protocol.models import StructuralCheckResult
from sheetguard.protocol.repair import STRUCTURAL_REPAIRS, Repair

log = get_logger(__name__)

ERR_NO_STRUCTURE = "No JSON-like structure detected in input"
ERR_UNBALANCED = "Unbalanced braces in input"
ERR_NO_VALID_OBJECT = "No valid JSON object found in input"
ERR_BAD_INPUT_TYPE = "Input must be a string or a JSON object"


@dataclass(frozen=True)
class Candidate:
    """A ``{...}`` span found in the raw text."""

    start: int
    end: int
    text: str
    balanced: bool


def extract_candidates(text: str) -> list[Candidate]:
    """Return every top-level brace-balanced span in *text*, in order.

    A trailing span whose braces never close is returned with
    ``balanced=False`` so that later stages can try to complete it.
    """
    candidates: list[Candidate] = []
    depth = 0
    start = -1
    in_string = False
    escaped = False

    for i, ch in enumerate(text):
        if depth == 0:
            if ch == "{":
                depth = 1
                start = i
                in_string = False
                escaped = False
            continue

        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                candidates.append(Candidate(start, i + 1, text[start : i + 1], True))

    if depth > 0 and start >= 0:
        candidates.append(Candidate(start, len(text), text[start:], False))
    return candidates


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, RecursionError):
        return None
    return parsed if isinstance(parsed, dict) else None


class StructuralChecker:
    """Locate and parse the JSON object inside a raw instruction.

    Args:
        repairs: Ordered repairs applied to the first candidate when no
                 candidate parses strictly.  Defaults to quote unification,
                 unquoted-key quoting and trailing-comma removal.
    """

    def __init__(self, repairs: tuple[Repair, ...] = STRUCTURAL_REPAIRS) -> None:
        self._repairs = repairs

    def check(self, raw: str | dict[str, Any]) -> StructuralCheckResult:
        if isinstance(raw, dict):
            return StructuralCheckResult(valid=True, json_=copy.deepcopy(raw))
        if not isinstance(raw, str):
            return StructuralCheckResult(valid=False, errors=[ERR_BAD_INPUT_TYPE])

        candidates = extract_candidates(raw)
        if not candidates:
            return StructuralCheckResult(valid=False, errors=[ERR_NO_STRUCTURE])

        for candidate in candidates:
            if not candidate.balanced:
                continue
            parsed = _loads_object(candidate.text)
            if parsed is not None:
                return StructuralCheckResult(valid=True, json_=parsed, extracted=candidate.text)

        first = candidates[0]
        repaired = first.text
        applied: list[str] = []
        for repair in self._repairs:
            after = repair(repaired)
            if after != repaired:
                applied.append(repair.name)
                repaired = after

        parsed = _loads_object(repaired) if applied else None
        if parsed is not None:
            log.debug("structural_repaired", repairs=applied)
            return StructuralCheckResult(
                valid=True,
                json_=parsed,
                extracted=first.text,
                repairs=applied,
            )

        errors = [ERR_UNBALANCED] if not first.balanced else []
        errors.append(ERR_NO_VALID_OBJECT)
        return StructuralCheckResult(valid=False, errors=errors, extracted=first.text)
