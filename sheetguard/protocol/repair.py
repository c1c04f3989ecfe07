"""Protocol — Text-level JSON repairs.

LLMs frequently emit JSON that is *almost* valid: single quotes, trailing
commas, unquoted keys, Python literals, quoted booleans, truncated output or
Markdown code fences.

Each repair below is a pure ``str -> str`` function with two guarantees:

  - **Idempotent**: ``fix(fix(x)) == fix(x)``.
  - **String-literal aware**: text inside double-quoted JSON strings is never
    rewritten (``fix_quotes`` is the one exception, since its whole job is to
    turn single-quoted literals into double-quoted ones).

The structural checker uses a small subset (``STRUCTURAL_REPAIRS``); the
syntactic normalizer runs the full ordered list (``NORMALIZER_FIXES``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

# A segment is (is_string_literal, text).
Segment = tuple[bool, str]

# Keys the action schemas type as strings; their values are never de-quoted.
TEXT_KEYS = frozenset({"action", "spreadsheetId", "tabName", "range", "author"})


# ---------------------------------------------------------------------------
# Lexical helpers
# ---------------------------------------------------------------------------


def split_literals(text: str) -> list[Segment]:
    """Split *text* into alternating code / double-quoted string segments.

    Escapes inside strings are honoured.  An unterminated string runs to the
    end of the text.
    """
    segments: list[Segment] = []
    buf: list[str] = []
    in_string = False
    escaped = False

    for ch in text:
        if in_string:
            buf.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                segments.append((True, "".join(buf)))
                buf = []
                in_string = False
        elif ch == '"':
            if buf:
                segments.append((False, "".join(buf)))
            buf = [ch]
            in_string = True
        else:
            buf.append(ch)

    if buf:
        segments.append((in_string, "".join(buf)))
    return segments


def _map_code(text: str, fn: Callable[[str], str]) -> str:
    """Apply *fn* to every run of text outside string literals."""
    return "".join(chunk if is_str else fn(chunk) for is_str, chunk in split_literals(text))


def _is_value_position(segments: list[Segment], index: int) -> bool:
    """True when the string at *index* is an object value or array element."""
    before = segments[index - 1][1].rstrip() if index > 0 else ""
    after = segments[index + 1][1].lstrip() if index + 1 < len(segments) else ""
    if not before or before[-1] not in ":[,":
        return False
    # Keys are followed by ':' so they never pass this check.
    return after == "" or after[0] in ",}]"


def _key_of(segments: list[Segment], index: int) -> str | None:
    """Name of the object key whose value is the string at *index*, if any."""
    if index < 2 or segments[index - 1][1].strip() != ":" or not segments[index - 2][0]:
        return None
    return segments[index - 2][1][1:-1]


def _dequote_values(text: str, predicate: Callable[[str], bool]) -> str:
    segments = split_literals(text)
    out: list[str] = []
    for i, (is_str, chunk) in enumerate(segments):
        if (
            is_str
            and len(chunk) >= 2
            and chunk.endswith('"')
            and predicate(chunk[1:-1])
            and _is_value_position(segments, i)
            and _key_of(segments, i) not in TEXT_KEYS
        ):
            out.append(chunk[1:-1])
        else:
            out.append(chunk)
    return "".join(out)


# ---------------------------------------------------------------------------
# Repairs (each is a pure, idempotent function)
# ---------------------------------------------------------------------------


_FENCE_RE = re.compile(r"```[ \t]*(?:json|JSON|javascript|js)?[ \t]*")


def strip_code_fences(text: str) -> str:
    """Remove Markdown ```json fences around the payload."""
    if "```" not in text:
        return text
    return _FENCE_RE.sub("", text).strip()


# A single quote opens a literal only where a JSON token may start.
_TOKEN_START = set("{[,:")


def fix_quotes(text: str) -> str:
    """Convert single-quoted literals to double-quoted JSON strings.

    Apostrophes inside words (``don't``) and inside existing double-quoted
    strings are left alone.
    """
    out: list[str] = []
    i = 0
    n = len(text)
    in_double = False
    escaped = False

    while i < n:
        ch = text[i]
        if in_double:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_double = False
            i += 1
            continue

        if ch == '"':
            in_double = True
            out.append(ch)
            i += 1
            continue

        if ch == "'" and _prev_token_char(out) in _TOKEN_START:
            end = _find_single_quote_end(text, i + 1)
            if end != -1:
                inner = text[i + 1 : end].replace("\\'", "'")
                inner = re.sub(r'(?<!\\)"', r'\\"', inner)
                out.append(f'"{inner}"')
                i = end + 1
                continue

        out.append(ch)
        i += 1

    return "".join(out)


def _prev_token_char(out: list[str]) -> str:
    for chunk in reversed(out):
        stripped = chunk.rstrip()
        if stripped:
            return stripped[-1]
    return ""


def _find_single_quote_end(text: str, start: int) -> int:
    i = start
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == "'":
            return i
        if text[i] == "\n":
            return -1
        i += 1
    return -1


def close_open_structures(text: str) -> str:
    """Append missing closing quotes, braces and brackets for truncated output."""
    if "{" not in text and "[" not in text:
        return text
    stack: list[str] = []
    segments = split_literals(text)
    for is_str, chunk in segments:
        if is_str:
            continue
        for ch in chunk:
            if ch in "{[":
                stack.append("}" if ch == "{" else "]")
            elif ch in "}]":
                if stack and stack[-1] == ch:
                    stack.pop()
                else:
                    # Mismatched closer: not a truncation, leave it to the parser.
                    return text

    suffix = ""
    last_is_str, last_chunk = segments[-1]
    if last_is_str and (len(last_chunk) < 2 or not _terminated(last_chunk)):
        suffix = '"'
    if not stack and not suffix:
        return text
    body = text if suffix else text.rstrip()
    if suffix and (len(body) - len(body.rstrip("\\"))) % 2 == 1:
        # A dangling escape would swallow the closing quote.
        body = body[:-1]
    return body + suffix + "".join(reversed(stack))


def _terminated(literal: str) -> bool:
    if not literal.endswith('"') or len(literal) < 2:
        return False
    backslashes = len(literal[1:-1]) - len(literal[1:-1].rstrip("\\"))
    return backslashes % 2 == 0


_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def fix_trailing_commas(text: str) -> str:
    """Remove commas directly before ``}`` or ``]``."""

    def _fix(chunk: str) -> str:
        previous = None
        while previous != chunk:
            previous = chunk
            chunk = _TRAILING_COMMA_RE.sub(r"\1", chunk)
        return chunk

    return _map_code(text, _fix)


_UNQUOTED_KEY_RE = re.compile(r"(?<=[{,])(\s*)([A-Za-z_$][A-Za-z0-9_$-]*)(\s*):")


def fix_unquoted_keys(text: str) -> str:
    """Quote bare object keys: ``{key: 1}`` → ``{"key": 1}``."""
    return _map_code(text, lambda chunk: _UNQUOTED_KEY_RE.sub(r'\1"\2"\3:', chunk))


_LITERALS = (
    (re.compile(r"\bTrue\b"), "true"),
    (re.compile(r"\bFalse\b"), "false"),
    (re.compile(r"\b(?:None|NULL|Null|undefined|nil|NaN)\b"), "null"),
)


def fix_literals(text: str) -> str:
    """Replace Python/JavaScript literals with their JSON equivalents."""

    def _fix(chunk: str) -> str:
        for pattern, repl in _LITERALS:
            chunk = pattern.sub(repl, chunk)
        return chunk

    return _map_code(text, _fix)


_WHITESPACE_RUN_RE = re.compile(r"\s{2,}|[\t\r\n\f\v]")


def fix_spacing(text: str) -> str:
    """Collapse whitespace runs outside strings to a single space."""
    return _map_code(text, lambda chunk: _WHITESPACE_RUN_RE.sub(" ", chunk)).strip()


def fix_booleans(text: str) -> str:
    """De-quote ``"true"``, ``"false"`` and ``"null"`` in value position, outside ``TEXT_KEYS``."""
    return _dequote_values(text, lambda inner: inner in ("true", "false", "null"))


# JSON number grammar, no leading zeros, at most 15 significant digits so
# that long numeric identifiers keep their exact value as strings.
_NUMBER_RE = re.compile(r"-?(?:0|[1-9][0-9]{0,14})(?:\.[0-9]{1,15})?(?:[eE][+-]?[0-9]{1,3})?")


def fix_numbers(text: str) -> str:
    """De-quote JSON-number-shaped strings in value position: ``"42"`` → ``42``.

    Values of ``TEXT_KEYS`` stay strings: ``{"tabName": "2024"}`` is unchanged.
    """
    return _dequote_values(text, lambda inner: _NUMBER_RE.fullmatch(inner) is not None)


# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Repair:
    """A named repair step."""

    name: str
    description: str
    fn: Callable[[str], str]

    def __call__(self, text: str) -> str:
        return self.fn(text)


NORMALIZER_FIXES: tuple[Repair, ...] = (
    Repair("strip_code_fences", "Removed Markdown code fences", strip_code_fences),
    Repair("fix_quotes", "Converted single quotes to double quotes", fix_quotes),
    Repair("close_open_structures", "Closed truncated strings, objects or arrays", close_open_structures),
    Repair("fix_trailing_commas", "Removed trailing commas", fix_trailing_commas),
    Repair("fix_unquoted_keys", "Quoted unquoted object keys", fix_unquoted_keys),
    Repair("fix_literals", "Replaced True/False/None/undefined with JSON literals", fix_literals),
    Repair("fix_spacing", "Collapsed whitespace outside strings", fix_spacing),
    Repair("fix_booleans", "Unquoted boolean and null values", fix_booleans),
    Repair("fix_numbers", "Unquoted numeric values", fix_numbers),
)

STRUCTURAL_REPAIRS: tuple[Repair, ...] = tuple(
    r for r in NORMALIZER_FIXES
    if r.name in ("fix_quotes", "fix_unquoted_keys", "fix_trailing_commas")
)
