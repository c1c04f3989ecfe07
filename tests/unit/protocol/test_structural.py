"""Unit tests — Structural pre-check."""

from __future__ import annotations

import pytest

from sheetguard.protocol.structural import (
    ERR_BAD_INPUT_TYPE,
    ERR_NO_STRUCTURE,
    ERR_NO_VALID_OBJECT,
    ERR_UNBALANCED,
    StructuralChecker,
    extract_candidates,
)


@pytest.fixture
def checker() -> StructuralChecker:
    return StructuralChecker()


# ---------------------------------------------------------------------------
# Candidate extraction
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestExtractCandidates:
    def test_two_objects_are_separate_candidates(self) -> None:
        candidates = extract_candidates('use {"a": 1} or {"b": 2}')
        assert [c.text for c in candidates] == ['{"a": 1}', '{"b": 2}']
        assert all(c.balanced for c in candidates)

    def test_braces_inside_strings_ignored(self) -> None:
        candidates = extract_candidates('{"text": "a } b"} tail')
        assert [c.text for c in candidates] == ['{"text": "a } b"}']

    def test_nested_object_is_one_candidate(self) -> None:
        candidates = extract_candidates('x {"data": {"value": 1}} y')
        assert candidates[0].text == '{"data": {"value": 1}}'
        assert candidates[0].start == 2

    def test_unclosed_span_marked_unbalanced(self) -> None:
        candidates = extract_candidates('here: {"action": "listTabs"')
        assert len(candidates) == 1
        assert candidates[0].balanced is False

    def test_no_braces(self) -> None:
        assert extract_candidates("update cell B5") == []


# ---------------------------------------------------------------------------
# Checker
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestStructuralChecker:
    def test_strict_json_in_prose(self, checker: StructuralChecker) -> None:
        result = checker.check('Sure! {"action": "listTabs"} Hope this helps.')
        assert result.valid
        assert result.strict
        assert result.json_ == {"action": "listTabs"}
        assert result.extracted == '{"action": "listTabs"}'

    def test_dict_input_is_copied(self, checker: StructuralChecker) -> None:
        raw = {"action": "updateCell", "data": {"value": 1}}
        result = checker.check(raw)
        assert result.valid and result.strict
        assert result.json_ == raw
        assert result.json_ is not raw
        assert result.json_["data"] is not raw["data"]

    def test_first_parseable_candidate_wins(self, checker: StructuralChecker) -> None:
        result = checker.check('{not json} then {"action": "health"}')
        assert result.valid
        assert result.json_ == {"action": "health"}

    def test_repairs_applied_to_first_candidate(self, checker: StructuralChecker) -> None:
        result = checker.check("{'action': 'listTabs', }")
        assert result.valid
        assert not result.strict
        assert result.json_ == {"action": "listTabs"}
        assert result.repairs == ["fix_quotes", "fix_trailing_commas"]

    def test_unquoted_keys_repaired(self, checker: StructuralChecker) -> None:
        result = checker.check('{action: "health"}')
        assert result.valid
        assert result.repairs == ["fix_unquoted_keys"]

    def test_no_structure(self, checker: StructuralChecker) -> None:
        result = checker.check("asdf qwer zxcv")
        assert not result.valid
        assert result.errors == [ERR_NO_STRUCTURE]

    def test_unbalanced(self, checker: StructuralChecker) -> None:
        result = checker.check('{"action": "listTabs"')
        assert not result.valid
        assert result.errors == [ERR_UNBALANCED, ERR_NO_VALID_OBJECT]
        assert result.extracted == '{"action": "listTabs"'

    def test_unrepairable(self, checker: StructuralChecker) -> None:
        result = checker.check("{this is not json at all}")
        assert not result.valid
        assert result.errors == [ERR_NO_VALID_OBJECT]

    def test_bad_input_type(self, checker: StructuralChecker) -> None:
        result = checker.check(42)  # type: ignore[arg-type]
        assert not result.valid
        assert result.errors == [ERR_BAD_INPUT_TYPE]

    def test_wire_alias(self, checker: StructuralChecker) -> None:
        wire = checker.check('{"action": "health"}').to_wire()
        assert wire["json"] == {"action": "health"}
