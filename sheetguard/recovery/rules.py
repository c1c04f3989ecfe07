"""Recovery — Deterministic rule-based extraction.

Last line of defence, and the only strategy that needs no network: a set of
small named grammars pull an action kind and its fields out of prose or of a
loosely keyed object.

  - ``ActionVerbGrammar``     "update cell", "add a row", "list tabs", ...
  - ``SpreadsheetIdGrammar``  IDs from Sheets URLs, labelled or bare tokens
  - ``TabNameGrammar``        "in sheet 'Sales'", "the Sales tab", "Sheet2"
  - ``RangeGrammar``          A1 references (single cells or ranges)
  - ``ValueGrammar``          the new cell value ("to 'Updated Value'")
  - ``RowDataGrammar``        "Product: iPhone, Price: 999" or a value list
  - ``NumberGrammar``         "1,200", "$3.50", "-7"

The extractor only reports what the input states.  It never copies
identifiers from the request context and never makes up values: a required
field it cannot find raises ``RuleExtractionError`` (spreadsheetId and
tabName excepted, since execution resolves them from the active selection).
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from typing import Any

from sheetguard.exceptions import ConfigurationUnavailableError, RuleExtractionError
from sheetguard.logging import get_logger
from sheetguard.protocol.constants import (
    CELL_PATTERN,
    RANGE_PATTERN,
    SPREADSHEET_ID_MAX_LEN,
    SPREADSHEET_ID_MIN_LEN,
    SPREADSHEET_ID_PATTERN,
    SPREADSHEET_URL_RE,
    TAB_NAME_MAX_LEN,
)
from sheetguard.protocol.models import ActionKind, CandidateAction, RecoveryMethod, RequestContext
from sheetguard.protocol.parser import ActionParser
from sheetguard.protocol.schema import SchemaRegistry, get_schema_registry
from sheetguard.recovery.base import RecoveryStrategy

log = get_logger(__name__)

# Loose key spellings → canonical field names.  Keys are compared lowercased
# with everything but letters and digits removed.
KEY_ALIASES: dict[str, str] = {
    "action": "action",
    "act": "action",
    "operation": "action",
    "command": "action",
    "spreadsheetid": "spreadsheetId",
    "sheetid": "spreadsheetId",
    "id": "spreadsheetId",
    "tabname": "tabName",
    "sheetname": "tabName",
    "tab": "tabName",
    "sheet": "tabName",
    "range": "range",
    "cell": "range",
    "cells": "range",
    "address": "range",
    "data": "data",
    "value": "data",
    "values": "data",
    "content": "data",
    "payload": "data",
    "options": "options",
    "opts": "options",
    "config": "options",
    "settings": "options",
}

# Loose action spellings → wire names (same key normalization).
ACTION_ALIASES: dict[str, ActionKind] = {
    "listtabs": ActionKind.LIST_TABS,
    "gettabs": ActionKind.LIST_TABS,
    "tabs": ActionKind.LIST_TABS,
    "fetchtabdata": ActionKind.FETCH_TAB_DATA,
    "getdata": ActionKind.FETCH_TAB_DATA,
    "fetchdata": ActionKind.FETCH_TAB_DATA,
    "updatecell": ActionKind.UPDATE_CELL,
    "setcell": ActionKind.UPDATE_CELL,
    "update": ActionKind.UPDATE_CELL,
    "addrow": ActionKind.ADD_ROW,
    "appendrow": ActionKind.ADD_ROW,
    "insert": ActionKind.ADD_ROW,
    "readrange": ActionKind.READ_RANGE,
    "getrange": ActionKind.READ_RANGE,
    "read": ActionKind.READ_RANGE,
    "discoverall": ActionKind.DISCOVER_ALL,
    "discover": ActionKind.DISCOVER_ALL,
    "batch": ActionKind.BATCH,
    "health": ActionKind.HEALTH,
}


def _alias_key(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", name.lower())


def canonical_action(name: Any) -> ActionKind | None:
    """Map a loosely spelled action name to its kind, or None."""
    if not isinstance(name, str):
        return None
    return ACTION_ALIASES.get(_alias_key(name))


def canonicalize_keys(obj: dict[str, Any]) -> dict[str, Any]:
    """Rename aliased top-level keys.  An exact canonical key wins over an alias."""
    result: dict[str, Any] = {}
    for key, value in obj.items():
        canonical = KEY_ALIASES.get(_alias_key(key), key) if isinstance(key, str) else key
        if canonical in result and canonical != key:
            continue
        result[canonical] = value
    return result


# ---------------------------------------------------------------------------
# Grammars
# ---------------------------------------------------------------------------


class Grammar(ABC):
    """A named extractor for one piece of an action."""

    name: str

    @abstractmethod
    def find(self, text: str) -> Any | None:
        """Return the extracted value, or None when *text* does not state it."""
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class NumberGrammar(Grammar):
    """Parse a standalone number, tolerating thousands separators and currency."""

    name = "number"

    _NUMBER_RE = re.compile(
        r"""
        ^\s*
        (?P<sign>-)?
        [$€£]?\s*
        (?P<int>[0-9]{1,3}(?:,[0-9]{3})+|[0-9]+)
        (?P<frac>\.[0-9]+)?
        \s*$
        """,
        re.VERBOSE,
    )

    def find(self, text: str) -> int | float | None:
        match = self._NUMBER_RE.match(text)
        if match is None:
            return None
        digits = match.group("int").replace(",", "")
        if len(digits) > 15 or (len(digits) > 1 and digits.startswith("0")):
            return None
        sign = "-" if match.group("sign") else ""
        if match.group("frac"):
            return float(f"{sign}{digits}{match.group('frac')}")
        return int(f"{sign}{digits}")

    def coerce(self, token: str) -> Any:
        """Return the number *token* spells, or the stripped token itself."""
        token = token.strip()
        number = self.find(token)
        return token if number is None else number


class ActionVerbGrammar(Grammar):
    """Detect the action kind from imperative phrasing.

    When several kinds match, the one mentioned first wins.  ``batch`` is
    never inferred from prose.
    """

    name = "action_verb"

    _PATTERNS: dict[ActionKind, tuple[str, ...]] = {
        ActionKind.LIST_TABS: (
            r"\blist\s+(?:all\s+|the\s+)*(?:tabs|sheets)\b",
            r"\b(?:show|get|what\s+are)\s+(?:me\s+)?(?:all\s+|the\s+)*(?:tabs|sheets)\b",
            r"\blist_?tabs\b",
            r"\bget_?tabs\b",
        ),
        ActionKind.FETCH_TAB_DATA: (
            r"\b(?:fetch|get|load|show|pull)\s+(?:me\s+)?(?:all\s+|the\s+)*(?:data|rows|contents)\b",
            r"\bfetch_?tab_?data\b",
            r"\bget_?data\b",
        ),
        ActionKind.UPDATE_CELL: (
            r"\b(?:update|set|change|write|put|edit)\s+(?:the\s+)?(?:value\s+(?:of|in)\s+)?(?:the\s+)?cell\b",
            r"\b(?:update|set|change|edit)\s+[A-Z]{1,3}[1-9][0-9]{0,6}\b",
            r"\bupdate_?cell\b",
            r"\bset_?cell\b",
        ),
        ActionKind.ADD_ROW: (
            r"\b(?:add|append|insert)\s+(?:a\s+|an\s+|one\s+|new\s+|another\s+)*(?:row|record|entry|line)\b",
            r"\badd_?row\b",
            r"\bappend_?row\b",
        ),
        ActionKind.READ_RANGE: (
            r"\bread\s+(?:the\s+)?(?:range|cells?|values?)\b",
            r"\bread\s+[A-Z]{1,3}[1-9][0-9]{0,6}\b",
            r"\bget\s+(?:the\s+)?range\b",
            r"\bread_?range\b",
            r"\bget_?range\b",
        ),
        ActionKind.DISCOVER_ALL: (
            r"\b(?:discover|find|list|show)\s+(?:all\s+|my\s+|the\s+)*spreadsheets\b",
            r"\bdiscover_?all\b",
        ),
        ActionKind.HEALTH: (
            r"\bhealth\s*[-_]?\s*check\b",
            r"^\s*health\s*[.!?]?\s*$",
            r"\bping\s+(?:the\s+)?backend\b",
        ),
    }

    def __init__(self) -> None:
        self._compiled = {
            kind: [re.compile(p, re.IGNORECASE) for p in patterns]
            for kind, patterns in self._PATTERNS.items()
        }

    def find(self, text: str) -> ActionKind | None:
        best: tuple[int, ActionKind] | None = None
        for kind, patterns in self._compiled.items():
            for pattern in patterns:
                match = pattern.search(text)
                if match and (best is None or match.start() < best[0]):
                    best = (match.start(), kind)
        return best[1] if best else None


class SpreadsheetIdGrammar(Grammar):
    """Find a spreadsheet ID: from a Sheets URL, after a label, or as a bare token.

    Bare tokens must contain at least one digit so that long words are not
    mistaken for IDs.
    """

    name = "spreadsheet_id"

    _ID = f"[A-Za-z0-9_-]{{{SPREADSHEET_ID_MIN_LEN},{SPREADSHEET_ID_MAX_LEN}}}"
    _LABELLED_RE = re.compile(
        r"\b(?:spreadsheet[\s_]*id|sheet[\s_]*id|document[\s_]*id|doc[\s_]*id|spreadsheet|id)"
        rf"\s*[:=#]?\s*[\"']?(?P<id>{_ID})(?![A-Za-z0-9_-])",
        re.IGNORECASE,
    )
    _BARE_RE = re.compile(rf"(?<![A-Za-z0-9_/-])(?P<id>{_ID})(?![A-Za-z0-9_-])")
    _FULL_RE = re.compile(SPREADSHEET_ID_PATTERN)

    def find(self, text: str) -> str | None:
        url = SPREADSHEET_URL_RE.search(text)
        if url and self._FULL_RE.match(url.group(1)):
            return url.group(1)
        labelled = self._LABELLED_RE.search(text)
        if labelled:
            return labelled.group("id")
        for match in self._BARE_RE.finditer(text):
            token = match.group("id")
            if any(c.isdigit() for c in token) and any(c.isalpha() for c in token):
                return token
        return None

    def clean(self, value: str) -> str:
        """Reduce a pasted Sheets URL to its ID; other values pass through."""
        url = SPREADSHEET_URL_RE.search(value)
        return url.group(1) if url else value.strip()


class TabNameGrammar(Grammar):
    """Find a tab name: quoted after/before "tab"/"sheet", or a single word beside it."""

    name = "tab_name"

    _NAME = rf"[^\"'“”‘’\n]{{1,{TAB_NAME_MAX_LEN}}}"
    _PATTERNS = (
        re.compile(
            rf"\b(?:tab|sheet)(?:\s*name)?\s*[:=]?\s*(?:called\s+|named\s+)?[\"'“‘](?P<name>{_NAME})[\"'”’]",
            re.IGNORECASE,
        ),
        re.compile(rf"[\"'“‘](?P<name>{_NAME})[\"'”’]\s+(?:tab|sheet)\b", re.IGNORECASE),
        re.compile(
            r"\b(?:in|on|from|of|into|to)\s+(?:the\s+)?(?:tab|sheet)\s+(?:called\s+|named\s+)?"
            r"(?P<name>[A-Za-z0-9_]+)\b",
            re.IGNORECASE,
        ),
        re.compile(
            r"\b(?:in|on|from|of|into|to)\s+(?:the\s+)?(?P<name>[A-Za-z0-9_]+)\s+(?:tab|sheet)\b",
            re.IGNORECASE,
        ),
        re.compile(r"\b(?P<name>Sheet[0-9]+)\b"),
    )
    _STOPWORDS = frozenset(
        {"the", "a", "an", "this", "that", "same", "active", "current", "my", "tab", "sheet", "new"}
    )

    def find(self, text: str) -> str | None:
        for pattern in self._PATTERNS:
            for match in pattern.finditer(text):
                name = match.group("name").strip()
                if name and name.lower() not in self._STOPWORDS:
                    return name
        return None


class RangeGrammar(Grammar):
    """Find an A1 reference.

    Args:
        allow_ranges: Accept ``A1:C10`` and ``A:C`` forms (readRange).  When
                      False only single cells match (updateCell).
    """

    name = "range"

    _CELL = r"[A-Za-z]{1,3}[1-9][0-9]{0,6}"
    _UPPER_CELL = r"[A-Z]{1,3}[1-9][0-9]{0,6}"

    def __init__(self, *, allow_ranges: bool = True) -> None:
        self._allow_ranges = allow_ranges
        tail = rf"(?:\s*:\s*{self._CELL})?" if allow_ranges else r"(?!\s*:)"
        upper_tail = rf"(?::{self._UPPER_CELL})?" if allow_ranges else r"(?!:)"
        self._labelled = re.compile(
            rf"\b(?:cells?|range|address)\s*[:=]?\s*[\"']?(?P<ref>{self._CELL}{tail})(?![A-Za-z0-9_-])",
            re.IGNORECASE,
        )
        self._bare = re.compile(
            rf"(?<![A-Za-z0-9_/.:-])(?P<ref>{self._UPPER_CELL}{upper_tail})(?![A-Za-z0-9_-])"
        )
        self._columns = re.compile(r"(?<![A-Za-z0-9_/-])(?P<ref>[A-Z]{1,3}:[A-Z]{1,3})(?![A-Za-z0-9_-])")
        self._full = re.compile(RANGE_PATTERN if allow_ranges else CELL_PATTERN)

    def find(self, text: str) -> str | None:
        patterns = [self._labelled, self._bare]
        if self._allow_ranges:
            patterns.append(self._columns)
        for pattern in patterns:
            for match in pattern.finditer(text):
                ref = self.clean(match.group("ref"))
                if self._full.match(ref):
                    return ref
        return None

    @staticmethod
    def clean(value: str) -> str:
        """Uppercase and drop whitespace: ``" b5 : c9"`` → ``"B5:C9"``."""
        return re.sub(r"\s+", "", value).upper()


class ValueGrammar(Grammar):
    """Find the value an instruction writes into a cell.

    Quoted values are kept verbatim as strings.  Unquoted values run up to the
    end of the sentence or a trailing tab clause ("on Sheet2", "in the Sales tab") and are typed
    through ``NumberGrammar``.
    """

    name = "value"

    _LEAD = r"(?:\b(?:to|with|as)\b|=)\s*(?:the\s+)?(?:value\s+(?:of\s+)?)?"
    _QUOTED_RE = re.compile(
        _LEAD + r"(?:\"(?P<dq>[^\"]*)\"|'(?P<sq>[^']*)'|“(?P<cq>[^”]*)”)",
        re.IGNORECASE,
    )
    _BARE_RE = re.compile(
        _LEAD
        + r"(?P<value>[^\"'\n]+?)\s*"
        + r"(?=[.;!]?\s*$|\s+(?:in|on|into)\s+(?:the\s+)?"
        + r"(?:(?:tab|sheet)\b|Sheet[0-9]+\b|[A-Za-z0-9_]+\s+(?:tab|sheet)\b|[\"']))",
        re.IGNORECASE,
    )

    def __init__(self, numbers: NumberGrammar | None = None) -> None:
        self._numbers = numbers or NumberGrammar()

    def find(self, text: str) -> Any | None:
        quoted = self._QUOTED_RE.search(text)
        if quoted:
            for group in ("dq", "sq", "cq"):
                if quoted.group(group) is not None:
                    return quoted.group(group)
        bare = self._BARE_RE.search(text)
        if bare:
            value = bare.group("value").strip()
            if value:
                return self._numbers.coerce(value)
        return None


class RowDataGrammar(Grammar):
    """Find row content: ``Column: value`` pairs, else a list of values.

    Multi-word column names must be Capitalized (``First Name: Ada``) or
    quoted so that the instruction's own wording is not taken for a column.
    """

    name = "row_data"

    _PAIR_RE = re.compile(
        r"""
        (?<![A-Za-z0-9_])
        (?P<key>
            "[^"\n]+" | '[^'\n]+'
          | [A-Z][A-Za-z0-9_]*(?:[ ][A-Z][A-Za-z0-9_]*)+
          | [A-Za-z][A-Za-z0-9_]*
        )
        \s*[:=]\s*
        (?P<value>"[^"]*" | '[^']*' | [^,;:=\n]+?)
        (?=\s*(?:[,;\n]|\band\b|$))
        """,
        re.VERBOSE,
    )
    _LIST_RE = re.compile(
        r"\b(?:values?|row|columns?)\s*[:=]?\s*\[(?P<items>[^\]]*)\]"
        r"|\b(?:values?|row)\s*[:=]\s*(?P<tail>[^.;\n]+)"
        r"|\bvalues?\s+(?P<words>[^.;\n]+)",
        re.IGNORECASE,
    )
    _RESERVED = frozenset(
        {
            "http",
            "https",
            "tab",
            "sheet",
            "tabname",
            "spreadsheet",
            "spreadsheetid",
            "range",
            "cell",
            "action",
            "id",
            "row",
            "value",
            "values",
        }
    )

    def __init__(self, numbers: NumberGrammar | None = None) -> None:
        self._numbers = numbers or NumberGrammar()

    def find(self, text: str) -> dict[str, Any] | list[Any] | None:
        row: dict[str, Any] = {}
        for match in self._PAIR_RE.finditer(text):
            key = _unquote(match.group("key"))
            if not key or _alias_key(key) in self._RESERVED or key in row:
                continue
            row[key] = self._typed(match.group("value"))
        if row:
            return row

        listed = self._LIST_RE.search(text)
        if listed is None:
            return None
        chunk = next(g for g in listed.group("items", "tail", "words") if g is not None)
        items = [self._typed(item) for item in chunk.split(",") if item.strip()]
        return items or None

    def _typed(self, token: str) -> Any:
        token = token.strip()
        if len(token) >= 2 and token[0] == token[-1] and token[0] in "\"'":
            return token[1:-1]
        return self._numbers.coerce(token)


def _unquote(token: str) -> str:
    token = token.strip()
    if len(token) >= 2 and token[0] == token[-1] and token[0] in "\"'":
        return token[1:-1].strip()
    return token


# ---------------------------------------------------------------------------
# Strategy
# ---------------------------------------------------------------------------


class RuleBasedStrategy(RecoveryStrategy):
    """Third recovery strategy: assemble an action from the grammars above.

    Detection order for the action kind:

      1. an ``action`` key (any alias spelling) in a parsed object,
      2. imperative verbs in prose (skipped for well-formed JSON input),
      3. ``context.expected_action``,
      4. the shape of a parsed object (``range`` + ``data.value`` → updateCell, ...).

    Args:
        registry: Schema registry that lists each kind's fields.
        timeout:  Strategy time budget in seconds.
        enabled:  When False the strategy is skipped.
    """

    method = RecoveryMethod.RULES

    def __init__(
        self,
        registry: SchemaRegistry | None = None,
        *,
        timeout: float = 2.0,
        enabled: bool = True,
        parser: ActionParser | None = None,
    ) -> None:
        super().__init__(timeout)
        self._registry = registry or get_schema_registry()
        self._enabled = enabled
        self._parser = parser or ActionParser()
        self.numbers = NumberGrammar()
        self.verbs = ActionVerbGrammar()
        self.spreadsheet_ids = SpreadsheetIdGrammar()
        self.tab_names = TabNameGrammar()
        self.cells = RangeGrammar(allow_ranges=False)
        self.ranges = RangeGrammar(allow_ranges=True)
        self.values = ValueGrammar(self.numbers)
        self.rows = RowDataGrammar(self.numbers)

    def is_configured(self) -> bool:
        return self._enabled

    def unavailable_reason(self) -> str:
        return "rules.enabled is false"

    async def extract(
        self,
        raw: str | dict[str, Any],
        context: RequestContext,
    ) -> CandidateAction:
        if not self._enabled:
            raise ConfigurationUnavailableError(self.method.value, self.unavailable_reason())
        return self.extract_sync(raw, context)

    def extract_sync(self, raw: str | dict[str, Any], context: RequestContext) -> CandidateAction:
        text = raw if isinstance(raw, str) else json.dumps(raw, ensure_ascii=False)
        fields, well_formed = self._structured_fields(raw)

        kind = self._detect_kind(text, fields, well_formed, context)
        if kind is None:
            raise RuleExtractionError("Could not detect an action in the input", missing_field="action")
        schema = self._registry.get(kind.value)
        if schema is None:
            raise RuleExtractionError(f"No schema registered for {kind.value}", missing_field="action")

        action: CandidateAction = {"action": kind.value}
        for spec in schema.fields:
            if spec.name == "action":
                continue
            if fields.get(spec.name) is not None:
                value = self._coerce(kind, spec.name, fields[spec.name])
            else:
                value = self._infer(kind, spec.name, text)
            if value is not None:
                action[spec.name] = value
            elif spec.required and not spec.contextual:
                raise RuleExtractionError(
                    f"Could not infer required field '{spec.name}' for {kind.value}",
                    missing_field=spec.name,
                )

        # Undeclared keys ride along so validation strips them with a warning.
        declared = {spec.name for spec in schema.fields}
        for key, value in fields.items():
            if key not in declared and key not in action:
                action[key] = value

        log.debug("rules_extracted", action=kind.value, fields=sorted(action))
        return action

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _structured_fields(self, raw: str | dict[str, Any]) -> tuple[dict[str, Any], bool]:
        """Return (canonical fields, well_formed) from any object found in *raw*."""
        if isinstance(raw, dict):
            return canonicalize_keys(raw), True
        outcome = self._parser.parse(raw)
        if not outcome.success or outcome.action is None:
            return {}, False
        reconstructed = outcome.normalization is not None and outcome.normalization.reconstructed
        return canonicalize_keys(outcome.action), not reconstructed

    def _detect_kind(
        self,
        text: str,
        fields: dict[str, Any],
        well_formed: bool,
        context: RequestContext,
    ) -> ActionKind | None:
        kind = canonical_action(fields.get("action"))
        if kind is None and not well_formed:
            kind = self.verbs.find(text)
        if kind is None:
            kind = context.expected_action
        if kind is None and well_formed:
            kind = _kind_from_shape(fields)
        return kind

    def _coerce(self, kind: ActionKind, name: str, value: Any) -> Any:
        if name == "spreadsheetId" and isinstance(value, str):
            return self.spreadsheet_ids.clean(value)
        if name == "tabName" and isinstance(value, str):
            return value.strip()
        if name == "range" and isinstance(value, str):
            return RangeGrammar.clean(value)
        if name == "data" and kind is ActionKind.UPDATE_CELL and not isinstance(value, dict):
            return {"value": value}
        return value

    def _infer(self, kind: ActionKind, name: str, text: str) -> Any | None:
        if name == "spreadsheetId":
            return self.spreadsheet_ids.find(text)
        if name == "tabName":
            return self.tab_names.find(text)
        if name == "range":
            grammar = self.cells if kind is ActionKind.UPDATE_CELL else self.ranges
            return grammar.find(text)
        if name == "data":
            if kind is ActionKind.UPDATE_CELL:
                value = self.values.find(text)
                return None if value is None else {"value": value}
            if kind is ActionKind.ADD_ROW:
                return self.rows.find(text)
        return None


def _kind_from_shape(fields: dict[str, Any]) -> ActionKind | None:
    """Guess the kind of a keyed object that lacks an action name."""
    data = fields.get("data")
    has_range = "range" in fields
    if has_range and isinstance(data, dict) and "value" in data:
        return ActionKind.UPDATE_CELL
    if has_range and data is None:
        return ActionKind.READ_RANGE
    if not has_range and isinstance(data, (dict, list)) and data:
        return ActionKind.ADD_ROW
    if "tabName" in fields and data is None:
        return ActionKind.FETCH_TAB_DATA
    if "spreadsheetId" in fields:
        return ActionKind.LIST_TABS
    return None
