"""Unit tests — CLI commands (parse, validate, schema, status)."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest
from typer.testing import CliRunner

from conftest import SPREADSHEET_ID
from sheetguard.cli.main import app
from sheetguard.pipeline.orchestrator import GuardrailPipeline

runner = CliRunner()


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SHEETGUARD_LOGGING__LEVEL", "error")


@pytest.mark.unit
class TestMainCLI:
    def test_help_exits_zero(self) -> None:
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0

    def test_main_no_args_shows_help(self) -> None:
        # no_args_is_help=True → shows help (exit code 0 or 2 depending on typer version)
        result = runner.invoke(app, [])
        assert result.exit_code in (0, 2)

    def test_schema_subcommand_help(self) -> None:
        result = runner.invoke(app, ["schema", "--help"])
        assert result.exit_code == 0


# ---------------------------------------------------------------------------
# parse
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestParseCommand:
    def test_json_output(self) -> None:
        result = runner.invoke(app, ["parse", "Update cell B5 to 42", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["success"] is True
        assert data["source"] == "rules"
        assert data["action"] == {"action": "updateCell", "range": "B5", "data": {"value": 42}}

    def test_human_output(self) -> None:
        result = runner.invoke(app, ["parse", '{"action": "health",}'])
        assert result.exit_code == 0
        assert "OK" in result.stdout
        assert "normalized" in result.stdout

    def test_headers_option(self) -> None:
        raw = json.dumps({"action": "addRow", "data": {"Product": "iPhone", "FakeColumn": 1}})
        result = runner.invoke(app, ["parse", raw, "-H", "Product", "-H", "Price", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["action"]["data"] == {"Product": "iPhone"}
        assert "Removed unknown column: FakeColumn" in data["validation"]["warnings"]

    def test_failure_exits_one(self) -> None:
        result = runner.invoke(app, ["parse", "asdf qwer zxcv", "--json"])
        assert result.exit_code == 1
        assert '"success": false' in result.stdout

    def test_unknown_expected_action(self) -> None:
        result = runner.invoke(app, ["parse", "x", "--expected-action", "dropTable"])
        assert result.exit_code == 2
        assert "Unknown action" in result.stdout

    def test_reads_stdin(self) -> None:
        result = runner.invoke(app, ["parse", "-", "--json"], input='{"action": "health"}')
        assert result.exit_code == 0
        assert json.loads(result.stdout)["source"] == "direct"

    def test_logging_follows_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[dict] = []
        monkeypatch.setattr("sheetguard.logging.configure_logging", lambda **kw: calls.append(kw))
        monkeypatch.setenv("SHEETGUARD_LOGGING__FORMAT", "json")

        result = runner.invoke(app, ["parse", '{"action": "health"}', "--json"])

        assert result.exit_code == 0
        assert calls == [{"level": "error", "format": "json", "log_file": None}]

    @pytest.mark.parametrize(("raw", "exit_code"), [('{"action": "health"}', 0), ("asdf qwer zxcv", 1)])
    def test_pipeline_is_closed(self, monkeypatch: pytest.MonkeyPatch, raw: str, exit_code: int) -> None:
        closed: list[bool] = []

        async def fake_close(self: GuardrailPipeline) -> None:
            closed.append(True)

        monkeypatch.setattr(GuardrailPipeline, "close", fake_close)

        result = runner.invoke(app, ["parse", raw, "--json"])

        assert result.exit_code == exit_code
        assert closed == [True]


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestValidateCommand:
    def test_valid_file(self, tmp_path: Path) -> None:
        path = tmp_path / "action.json"
        path.write_text(
            json.dumps(
                {
                    "action": "readRange",
                    "spreadsheetId": SPREADSHEET_ID,
                    "tabName": "Sheet1",
                    "range": "A1:C10",
                }
            )
        )
        result = runner.invoke(app, ["validate", str(path)])
        assert result.exit_code == 0
        assert "Valid readRange action" in result.stdout

    def test_invalid_action(self, tmp_path: Path) -> None:
        path = tmp_path / "action.json"
        path.write_text('{"action": "updateCell", "range": "B5"}')
        result = runner.invoke(app, ["validate", str(path)])
        assert result.exit_code == 1
        assert "Missing required field: data" in result.stdout

    def test_missing_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["validate", str(tmp_path / "absent.json")])
        assert result.exit_code == 1
        assert "File not found" in result.stdout

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        result = runner.invoke(app, ["validate", str(path)])
        assert result.exit_code == 1
        assert "Invalid JSON" in result.stdout


# ---------------------------------------------------------------------------
# schema
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestSchemaCommand:
    def test_dump_one_to_file(self, tmp_path: Path) -> None:
        out = tmp_path / "schema.json"
        result = runner.invoke(app, ["schema", "dump", "updateCell", "--output", str(out)])
        assert result.exit_code == 0
        schema = json.loads(out.read_text())
        assert schema["title"] == "updateCell"
        assert schema["additionalProperties"] is False

    def test_dump_all_to_file(self, tmp_path: Path) -> None:
        out = tmp_path / "schemas.json"
        result = runner.invoke(app, ["schema", "dump", "--output", str(out)])
        assert result.exit_code == 0
        assert "batch" in json.loads(out.read_text())

    def test_dump_unknown_action(self) -> None:
        result = runner.invoke(app, ["schema", "dump", "dropTable"])
        assert result.exit_code == 1
        assert "Unknown action" in result.stdout

    def test_list(self) -> None:
        result = runner.invoke(app, ["schema", "list"])
        assert result.exit_code == 0
        assert "updateCell" in result.stdout


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestStatusCommand:
    def test_reports_health(self, monkeypatch: pytest.MonkeyPatch) -> None:
        seen: list[str] = []

        def fake_get(url: str, **kwargs: object) -> httpx.Response:
            seen.append(url)
            return httpx.Response(
                200,
                json={"healthy": True, "strategies": ["rules"]},
                request=httpx.Request("GET", url),
            )

        monkeypatch.setattr(httpx, "get", fake_get)
        result = runner.invoke(app, ["status", "--url", "http://svc.test:9000/"])
        assert result.exit_code == 0
        assert seen == ["http://svc.test:9000/health"]
        assert "rules" in result.stdout

    def test_unreachable_exits_one(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fake_get(url: str, **kwargs: object) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr(httpx, "get", fake_get)
        result = runner.invoke(app, ["status", "--url", "http://svc.test:9000"])
        assert result.exit_code == 1
        assert "unreachable" in result.stdout
