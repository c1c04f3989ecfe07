"""Unit tests — Syntactic normalizer."""

from __future__ import annotations

import pytest

from sheetguard.protocol.normalizer import AGGRESSIVE_FIX, SyntacticNormalizer, reconstruct


@pytest.fixture
def normalizer() -> SyntacticNormalizer:
    return SyntacticNormalizer()


@pytest.mark.unit
class TestFixCascade:
    def test_mixed_defects(self, normalizer: SyntacticNormalizer) -> None:
        result = normalizer.normalize("{action: 'listTabs',}")
        assert result.success
        assert result.parsed == {"action": "listTabs"}
        assert result.output == '{"action": "listTabs"}'
        assert [f.fix for f in result.applied_fixes] == [
            "fix_quotes",
            "fix_trailing_commas",
            "fix_unquoted_keys",
        ]

    def test_applied_fix_records_before_and_after(self, normalizer: SyntacticNormalizer) -> None:
        result = normalizer.normalize('{"action": "health",}')
        (fix,) = result.applied_fixes
        assert fix.fix == "fix_trailing_commas"
        assert fix.before == '{"action": "health",}'
        assert fix.after == '{"action": "health"}'
        assert fix.description

    def test_code_fences(self, normalizer: SyntacticNormalizer) -> None:
        result = normalizer.normalize('```json\n{"a": 1}\n```')
        assert result.parsed == {"a": 1}
        assert result.applied_fixes[0].fix == "strip_code_fences"

    def test_python_literals(self, normalizer: SyntacticNormalizer) -> None:
        result = normalizer.normalize("{'flag': True, 'v': None}")
        assert result.parsed == {"flag": True, "v": None}

    def test_quoted_scalars_are_typed(self, normalizer: SyntacticNormalizer) -> None:
        result = normalizer.normalize('{"qty": "42", "ok": "true"}')
        assert result.parsed == {"qty": 42, "ok": True}

    def test_truncated_output_closed(self, normalizer: SyntacticNormalizer) -> None:
        result = normalizer.normalize('{"action": "readRange", "range": "A1:C10"')
        assert result.parsed == {"action": "readRange", "range": "A1:C10"}
        assert "close_open_structures" in [f.fix for f in result.applied_fixes]

    def test_valid_json_needs_no_fix(self, normalizer: SyntacticNormalizer) -> None:
        result = normalizer.normalize('{"action": "health"}')
        assert result.success
        assert result.applied_fixes == []

    def test_skip(self) -> None:
        normalizer = SyntacticNormalizer(skip=["fix_trailing_commas"])
        assert "fix_trailing_commas" not in normalizer.fix_names


@pytest.mark.unit
class TestFailures:
    def test_empty_input(self, normalizer: SyntacticNormalizer) -> None:
        result = normalizer.normalize("   ")
        assert not result.success
        assert result.errors == ["Input is empty"]

    def test_top_level_array_without_aggressive(self) -> None:
        result = SyntacticNormalizer(aggressive=False).normalize("[1, 2]")
        assert not result.success
        assert result.errors == ["Top-level JSON value must be an object, got list"]

    def test_nothing_to_reconstruct(self, normalizer: SyntacticNormalizer) -> None:
        result = normalizer.normalize("asdf qwer zxcv")
        assert not result.success
        assert result.errors[0].startswith("JSON parse failed")
        assert result.errors[1] == "Aggressive reconstruction found no key/value pairs"


@pytest.mark.unit
class TestAggressiveReconstruction:
    def test_rebuilds_flat_object(self, normalizer: SyntacticNormalizer) -> None:
        result = normalizer.normalize("action: updateCell, range: B5, data: 42, dryRun: true")
        assert result.success
        assert result.reconstructed
        assert result.parsed == {"action": "updateCell", "range": "B5", "data": 42, "dryRun": True}
        assert result.applied_fixes[-1].fix == AGGRESSIVE_FIX

    def test_first_occurrence_of_a_key_wins(self) -> None:
        assert reconstruct("a: 1, a: 2") == {"a": 1}

    def test_values_are_taken_verbatim(self) -> None:
        # Misspelled names are not corrected; validation decides.
        assert reconstruct("acton: updateCel") == {"acton": "updateCel"}

    def test_quoted_values(self) -> None:
        assert reconstruct("""name: 'Q3 Sales', note: "x, y" """) == {"name": "Q3 Sales", "note": "x, y"}

    def test_no_pairs(self) -> None:
        assert reconstruct("nothing here") is None
