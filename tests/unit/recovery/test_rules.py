"""Unit tests — Rule-based recovery (grammars and strategy).

Coverage targets:
  - Each named grammar on positive and negative inputs
  - Key and action alias canonicalisation
  - Action detection order (alias, verbs, expected action, shape)
  - Required vs. contextual fields
  - Context identifiers are never copied into the action
"""

from __future__ import annotations

import pytest

from sheetguard.exceptions import ConfigurationUnavailableError, RuleExtractionError
from sheetguard.protocol.models import ActionKind, RequestContext
from sheetguard.recovery.rules import (
    ActionVerbGrammar,
    NumberGrammar,
    RangeGrammar,
    RowDataGrammar,
    RuleBasedStrategy,
    SpreadsheetIdGrammar,
    TabNameGrammar,
    ValueGrammar,
    canonical_action,
    canonicalize_keys,
)

from conftest import SHEET_URL, SPREADSHEET_ID


@pytest.fixture
def rules() -> RuleBasedStrategy:
    return RuleBasedStrategy()


# ---------------------------------------------------------------------------
# Aliases
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestAliases:
    @pytest.mark.parametrize(
        ("name", "kind"),
        [
            ("updateCell", ActionKind.UPDATE_CELL),
            ("set_cell", ActionKind.UPDATE_CELL),
            ("fetch-tab-data", ActionKind.FETCH_TAB_DATA),
            ("Append Row", ActionKind.ADD_ROW),
            ("LISTTABS", ActionKind.LIST_TABS),
        ],
    )
    def test_canonical_action(self, name: str, kind: ActionKind) -> None:
        assert canonical_action(name) is kind

    def test_unknown_action(self) -> None:
        assert canonical_action("explode") is None
        assert canonical_action(3) is None

    def test_canonicalize_keys(self) -> None:
        result = canonicalize_keys({"operation": "x", "Sheet_Name": "Sales", "cell": "B5", "extra": 1})
        assert result == {"action": "x", "tabName": "Sales", "range": "B5", "extra": 1}

    def test_exact_key_wins_over_alias(self) -> None:
        assert canonicalize_keys({"action": "a", "act": "b"}) == {"action": "a"}
        assert canonicalize_keys({"act": "b", "action": "a"}) == {"action": "a"}


# ---------------------------------------------------------------------------
# Grammars
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestNumberGrammar:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [("42", 42), ("1,200", 1200), ("$3.50", 3.5), ("-7", -7), ("  99 ", 99)],
    )
    def test_numbers(self, text: str, expected: float) -> None:
        assert NumberGrammar().find(text) == expected

    @pytest.mark.parametrize("text", ["007", "12abc", "1234567890123456", "1,20", ""])
    def test_not_numbers(self, text: str) -> None:
        assert NumberGrammar().find(text) is None

    def test_coerce_keeps_text(self) -> None:
        grammar = NumberGrammar()
        assert grammar.coerce(" Paris ") == "Paris"
        assert grammar.coerce("1,000") == 1000


@pytest.mark.unit
class TestActionVerbGrammar:
    @pytest.mark.parametrize(
        ("text", "kind"),
        [
            ("Update cell B5 to 42", ActionKind.UPDATE_CELL),
            ("set C3 to done", ActionKind.UPDATE_CELL),
            ("please add a new row with Product: iPhone", ActionKind.ADD_ROW),
            ("list all tabs", ActionKind.LIST_TABS),
            ("what are the sheets in this file?", ActionKind.LIST_TABS),
            ("show me the data in the Sales tab", ActionKind.FETCH_TAB_DATA),
            ("read range A1:C10", ActionKind.READ_RANGE),
            ("discover all spreadsheets", ActionKind.DISCOVER_ALL),
            ("run a health check", ActionKind.HEALTH),
        ],
    )
    def test_detects(self, text: str, kind: ActionKind) -> None:
        assert ActionVerbGrammar().find(text) is kind

    def test_first_mention_wins(self) -> None:
        assert ActionVerbGrammar().find("read range A1:B2 then update cell C3") is ActionKind.READ_RANGE

    def test_nothing_detected(self) -> None:
        assert ActionVerbGrammar().find("asdf qwer zxcv") is None


@pytest.mark.unit
class TestSpreadsheetIdGrammar:
    def test_from_url(self) -> None:
        assert SpreadsheetIdGrammar().find(f"open {SHEET_URL} and list tabs") == SPREADSHEET_ID

    def test_labelled(self) -> None:
        assert SpreadsheetIdGrammar().find(f"spreadsheet id: {SPREADSHEET_ID}") == SPREADSHEET_ID

    def test_bare_token(self) -> None:
        assert SpreadsheetIdGrammar().find(f"in doc {SPREADSHEET_ID} please") == SPREADSHEET_ID

    def test_long_words_are_not_ids(self) -> None:
        assert SpreadsheetIdGrammar().find("abcdefghijklmnopqrstuvwxyzabc") is None

    def test_short_tokens_are_not_ids(self) -> None:
        assert SpreadsheetIdGrammar().find("id abc123") is None

    def test_clean(self) -> None:
        grammar = SpreadsheetIdGrammar()
        assert grammar.clean(SHEET_URL) == SPREADSHEET_ID
        assert grammar.clean(f" {SPREADSHEET_ID} ") == SPREADSHEET_ID


@pytest.mark.unit
class TestTabNameGrammar:
    @pytest.mark.parametrize(
        ("text", "name"),
        [
            ("read A1 in sheet 'Q3 Sales'", "Q3 Sales"),
            ('use the tab named "Budget 2024"', "Budget 2024"),
            ("the 'Inventory' tab", "Inventory"),
            ("show rows on the Sales tab", "Sales"),
            ("fetch data from sheet Inventory", "Inventory"),
            ("write 5 to Sheet2", "Sheet2"),
        ],
    )
    def test_detects(self, text: str, name: str) -> None:
        assert TabNameGrammar().find(text) == name

    def test_stopwords(self) -> None:
        assert TabNameGrammar().find("read A1 in the current sheet") is None

    def test_quoted_value_is_not_a_tab(self) -> None:
        assert TabNameGrammar().find("Update cell B5 to 'Updated Value'") is None


@pytest.mark.unit
class TestRangeGrammar:
    def test_single_cell(self) -> None:
        assert RangeGrammar(allow_ranges=False).find("Update cell B5 to 42") == "B5"

    def test_labelled_lowercase(self) -> None:
        assert RangeGrammar(allow_ranges=False).find("set cell b5 to 1") == "B5"

    def test_cells_only_rejects_ranges(self) -> None:
        assert RangeGrammar(allow_ranges=False).find("cell B5:C9") is None

    def test_rectangle(self) -> None:
        assert RangeGrammar().find("read A1:C10 please") == "A1:C10"

    def test_labelled_with_spaces(self) -> None:
        assert RangeGrammar().find("range a1 : c10") == "A1:C10"

    def test_columns(self) -> None:
        assert RangeGrammar().find("read columns A:C") == "A:C"

    def test_none(self) -> None:
        assert RangeGrammar().find("list the tabs") is None

    def test_clean(self) -> None:
        assert RangeGrammar.clean(" b5 : c9") == "B5:C9"


@pytest.mark.unit
class TestValueGrammar:
    @pytest.mark.parametrize(
        ("text", "value"),
        [
            ("Update cell B5 to 'Updated Value'", "Updated Value"),
            ('set A1 to "hello, world"', "hello, world"),
            ("set cell B5 to 42", 42),
            ("change cell C3 to 1,200 in sheet Sales", 1200),
            ("fill cell A1 with Done.", "Done"),
            ("B2 = 3.5", 3.5),
            ("set A1 to the value of 'x'", "x"),
            ("Set cell A1 to 5 on Sheet2", 5),
            ("Update cell B5 to 42 in the Sales tab", 42),
            ("set A1 to pending review on the tab 'Q3'", "pending review"),
        ],
    )
    def test_detects(self, text: str, value: object) -> None:
        assert ValueGrammar().find(text) == value

    def test_quoted_numbers_stay_text(self) -> None:
        assert ValueGrammar().find("set A1 to '007'") == "007"

    def test_no_value(self) -> None:
        assert ValueGrammar().find("update B5") is None

    def test_as_inside_words_is_not_a_lead(self) -> None:
        assert ValueGrammar().find("assign cell B5") is None


@pytest.mark.unit
class TestRowDataGrammar:
    def test_pairs(self) -> None:
        assert RowDataGrammar().find("Add a row with Product: iPhone, Price: 999") == {
            "Product": "iPhone",
            "Price": 999,
        }

    def test_multi_word_columns(self) -> None:
        assert RowDataGrammar().find("First Name: Ada, Last Name: Lovelace") == {
            "First Name": "Ada",
            "Last Name": "Lovelace",
        }

    def test_quoted_keys_and_values(self) -> None:
        assert RowDataGrammar().find("\"unit price\" = '3.50'; Qty = 2") == {"unit price": "3.50", "Qty": 2}

    def test_reserved_keys_skipped(self) -> None:
        assert RowDataGrammar().find("tab: Sales, Product: iPhone") == {"Product": "iPhone"}

    def test_bracketed_list(self) -> None:
        assert RowDataGrammar().find("add row values [iPhone, 999, yes]") == ["iPhone", 999, "yes"]

    def test_row_tail_list(self) -> None:
        assert RowDataGrammar().find("append row: Alice, 30, Paris") == ["Alice", 30, "Paris"]

    def test_nothing(self) -> None:
        assert RowDataGrammar().find("add a row") is None


# ---------------------------------------------------------------------------
# Strategy
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestRuleBasedStrategy:
    def test_update_cell_from_prose(self, rules: RuleBasedStrategy) -> None:
        action = rules.extract_sync("Update cell B5 to 'Updated Value'", RequestContext())
        assert action == {"action": "updateCell", "range": "B5", "data": {"value": "Updated Value"}}

    def test_gibberish(self, rules: RuleBasedStrategy) -> None:
        with pytest.raises(RuleExtractionError, match="Could not detect an action in the input") as exc:
            rules.extract_sync("asdf qwer zxcv", RequestContext())
        assert exc.value.missing_field == "action"

    def test_read_range_with_url_and_tab(self, rules: RuleBasedStrategy) -> None:
        raw = f"Read range A1:C10 from sheet 'Q3 Sales' in {SHEET_URL}"
        assert rules.extract_sync(raw, RequestContext()) == {
            "action": "readRange",
            "spreadsheetId": SPREADSHEET_ID,
            "tabName": "Q3 Sales",
            "range": "A1:C10",
        }

    def test_add_row(self, rules: RuleBasedStrategy) -> None:
        action = rules.extract_sync("Add a row with Product: iPhone, Price: 999", RequestContext())
        assert action == {"action": "addRow", "data": {"Product": "iPhone", "Price": 999}}

    def test_list_tabs_from_url(self, rules: RuleBasedStrategy) -> None:
        action = rules.extract_sync(f"list the tabs of {SHEET_URL}", RequestContext())
        assert action == {"action": "listTabs", "spreadsheetId": SPREADSHEET_ID}

    def test_parameterless_actions(self, rules: RuleBasedStrategy) -> None:
        assert rules.extract_sync("discover all spreadsheets", RequestContext()) == {"action": "discoverAll"}
        assert rules.extract_sync("health check", RequestContext()) == {"action": "health"}

    def test_loosely_keyed_object(self, rules: RuleBasedStrategy) -> None:
        raw = {"operation": "set_cell", "cell": "b5", "value": 42, "sheet": "Sales"}
        assert rules.extract_sync(raw, RequestContext()) == {
            "action": "updateCell",
            "tabName": "Sales",
            "range": "B5",
            "data": {"value": 42},
        }

    def test_value_stops_before_tab_clause(self, rules: RuleBasedStrategy) -> None:
        assert rules.extract_sync("Set cell A1 to 5 on Sheet2", RequestContext()) == {
            "action": "updateCell",
            "tabName": "Sheet2",
            "range": "A1",
            "data": {"value": 5},
        }
        assert rules.extract_sync("Update cell B5 to 42 in the Sales tab", RequestContext()) == {
            "action": "updateCell",
            "tabName": "Sales",
            "range": "B5",
            "data": {"value": 42},
        }

    def test_undeclared_keys_are_kept(self, rules: RuleBasedStrategy) -> None:
        raw = {"action": "listTabs", "foo": 1}
        assert rules.extract_sync(raw, RequestContext()) == {"action": "listTabs", "foo": 1}

    def test_url_in_structured_field_is_reduced_to_id(self, rules: RuleBasedStrategy) -> None:
        raw = {"action": "listTabs", "spreadsheetId": SHEET_URL}
        assert rules.extract_sync(raw, RequestContext())["spreadsheetId"] == SPREADSHEET_ID

    def test_expected_action_when_nothing_detected(self, rules: RuleBasedStrategy) -> None:
        context = RequestContext(expected_action=ActionKind.UPDATE_CELL)
        action = rules.extract_sync("B5 = 'hello'", context)
        assert action == {"action": "updateCell", "range": "B5", "data": {"value": "hello"}}

    def test_verbs_beat_expected_action(self, rules: RuleBasedStrategy) -> None:
        context = RequestContext(expected_action=ActionKind.UPDATE_CELL)
        assert rules.extract_sync("list all tabs", context) == {"action": "listTabs"}

    def test_well_formed_json_kind_from_shape(self, rules: RuleBasedStrategy) -> None:
        raw = {"range": "A1:B2", "note": "update cell"}
        assert rules.extract_sync(raw, RequestContext()) == {
            "action": "readRange",
            "range": "A1:B2",
            "note": "update cell",
        }

    def test_context_identifiers_never_copied(self, rules: RuleBasedStrategy) -> None:
        context = RequestContext(spreadsheet_id=SPREADSHEET_ID, tab_name="Sales")
        action = rules.extract_sync("Update cell B5 to 42", context)
        assert "spreadsheetId" not in action
        assert "tabName" not in action

    def test_missing_required_field(self, rules: RuleBasedStrategy) -> None:
        with pytest.raises(RuleExtractionError, match="Could not infer required field 'range' for updateCell") as exc:
            rules.extract_sync("update cell to 42", RequestContext())
        assert exc.value.missing_field == "range"

    @pytest.mark.asyncio
    async def test_extract_is_async(self, rules: RuleBasedStrategy) -> None:
        action = await rules.extract("health check", RequestContext())
        assert action == {"action": "health"}

    @pytest.mark.asyncio
    async def test_disabled(self) -> None:
        strategy = RuleBasedStrategy(enabled=False)
        assert strategy.is_configured() is False
        with pytest.raises(ConfigurationUnavailableError):
            await strategy.extract("health check", RequestContext())
