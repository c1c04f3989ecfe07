"""Protocol constants — wire vocabulary, identifier grammars and limits.

These values are shared by the schema registry, the validator and the
rule-based extractor.  Keep them in one place so that the validator never
accepts an identifier the extractor would refuse (and vice versa).
"""

from __future__ import annotations

import re

SCHEMA_VERSION = "1.0"

# Wire vocabulary accepted by the spreadsheet backend, in display order.
ACTION_NAMES: tuple[str, ...] = (
    "listTabs",
    "fetchTabData",
    "updateCell",
    "addRow",
    "readRange",
    "discoverAll",
    "batch",
    "health",
)

# Spreadsheet identifier: opaque token of URL-safe characters.  Google issues
# 44-character IDs today; 25 is the floor used for older documents.
SPREADSHEET_ID_MIN_LEN = 25
SPREADSHEET_ID_MAX_LEN = 64
SPREADSHEET_ID_PATTERN = (
    r"^[A-Za-z0-9_-]{" + f"{SPREADSHEET_ID_MIN_LEN},{SPREADSHEET_ID_MAX_LEN}" + r"}$"
)
SPREADSHEET_URL_RE = re.compile(
    r"(?:https?://)?(?:docs\.google\.com/)?spreadsheets/d/([A-Za-z0-9_-]+)"
)

TAB_NAME_MAX_LEN = 100

# A single cell in A1 notation (updateCell target).
CELL_PATTERN = r"^[A-Z]{1,3}[1-9][0-9]{0,6}$"
# A cell, a rectangle (A1:C10) or whole columns (A:C).
RANGE_PATTERN = (
    r"^(?:[A-Z]{1,3}[1-9][0-9]{0,6}(?::[A-Z]{1,3}[1-9][0-9]{0,6})?|[A-Z]{1,3}:[A-Z]{1,3})$"
)

MAX_BATCH_ACTIONS = 50
MAX_CELL_VALUE_LEN = 50_000
DISCOVER_MAX_RESULTS = 100
FETCH_SAMPLE_MAX_ROWS = 10_000

# Leading characters that make a spreadsheet evaluate a string as a formula.
FORMULA_PREFIX_RE = re.compile(r"^(?:[=+@]|-(?![0-9.]))")
