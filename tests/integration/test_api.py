"""Integration tests — Normalization service HTTP API.

Uses FastAPI TestClient with a real app instance (rules-only recovery) to
exercise the routes, authentication and error handling end-to-end.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from conftest import SPREADSHEET_ID
from sheetguard import __version__
from sheetguard.api.server import create_app
from sheetguard.config import Settings

_LOGGING = {"level": "warning", "format": "console", "file": None}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def client() -> Iterator[TestClient]:
    settings = Settings(logging=_LOGGING, server={"max_raw_length": 256})
    app = create_app(settings=settings)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def auth_client() -> Iterator[TestClient]:
    settings = Settings(logging=_LOGGING, server={"api_token": "secret-token"})
    app = create_app(settings=settings)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestHealth:
    def test_health(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["healthy"] is True
        assert data["version"] == __version__
        assert data["schemaVersion"] == "1.0"
        assert data["strategies"] == ["rules"]
        assert "updateCell" in data["actions"]

    def test_request_id_is_generated(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.headers["X-Request-ID"]

    def test_request_id_is_echoed(self, client: TestClient) -> None:
        resp = client.get("/health", headers={"X-Request-ID": "abc-123"})
        assert resp.headers["X-Request-ID"] == "abc-123"


# ---------------------------------------------------------------------------
# POST /normalize
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestNormalize:
    def test_direct_action(self, client: TestClient) -> None:
        resp = client.post("/normalize", json={"raw": '{"action": "health"}'})
        assert resp.status_code == 200
        data = resp.json()
        assert data["ok"] is True
        assert data["data"] == {"action": "health"}
        assert data["metadata"]["source"] == "direct"
        assert data["metadata"]["action"] == "health"

    def test_normalized_action(self, client: TestClient) -> None:
        raw = f'{{"action": "listTabs", "spreadsheetId": "{SPREADSHEET_ID}",}}'
        data = client.post("/normalize", json={"raw": raw}).json()
        assert data["ok"] is True
        assert data["metadata"]["source"] == "normalized"
        assert data["metadata"]["appliedFixes"][0]["fix"] == "fix_trailing_commas"

    def test_prose_recovered_by_rules(self, client: TestClient) -> None:
        data = client.post("/normalize", json={"raw": "Update cell B5 to 'Updated Value'"}).json()
        assert data["ok"] is True
        assert data["data"] == {"action": "updateCell", "range": "B5", "data": {"value": "Updated Value"}}
        assert data["metadata"]["source"] == "rules"
        assert data["metadata"]["attempts"][0]["method"] == "rules"
        assert data["warnings"]

    def test_failure_is_a_normal_answer(self, client: TestClient) -> None:
        resp = client.post("/normalize", json={"raw": "asdf qwer zxcv"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["ok"] is False
        assert data["data"] is None
        assert data["error"] == "Recovery exhausted: rules: Could not detect an action in the input"
        assert data["suggestions"]

    def test_headers_filter_row_data(self, client: TestClient) -> None:
        body = {
            "raw": {"action": "addRow", "data": {"Product": "iPhone", "FakeColumn": 1}},
            "options": {"context": {"headers": ["Product", "Price"]}},
        }
        data = client.post("/normalize", json=body).json()
        assert data["ok"] is True
        assert data["data"]["data"] == {"Product": "iPhone"}
        assert "Removed unknown column: FakeColumn" in data["warnings"]

    def test_target_schema_biases_recovery(self, client: TestClient) -> None:
        body = {"raw": "B5 = 'hello'", "options": {"targetSchema": "updateCell"}}
        data = client.post("/normalize", json=body).json()
        assert data["ok"] is True
        assert data["data"] == {"action": "updateCell", "range": "B5", "data": {"value": "hello"}}

    def test_unknown_target_schema_rejected(self, client: TestClient) -> None:
        resp = client.post("/normalize", json={"raw": "x", "options": {"targetSchema": "dropTable"}})
        assert resp.status_code == 422

    def test_request_id_in_metadata(self, client: TestClient) -> None:
        resp = client.post(
            "/normalize",
            json={"raw": '{"action": "health"}'},
            headers={"X-Request-ID": "req-42"},
        )
        assert resp.json()["metadata"]["requestId"] == "req-42"

    def test_oversized_raw(self, client: TestClient) -> None:
        resp = client.post("/normalize", json={"raw": "x" * 300})
        assert resp.status_code == 400
        data = resp.json()
        assert data["code"] == "parse_error"
        assert data["error"] == "Raw input exceeds 256 characters"
        assert data["request_id"]


# ---------------------------------------------------------------------------
# POST /validate
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestValidate:
    def test_valid(self, client: TestClient) -> None:
        action = {
            "action": "updateCell",
            "spreadsheetId": SPREADSHEET_ID,
            "tabName": "Sheet1",
            "range": "B5",
            "data": {"value": 1},
        }
        data = client.post("/validate", json={"data": action}).json()
        assert data["valid"] is True
        assert data["action"] == "updateCell"

    def test_invalid(self, client: TestClient) -> None:
        data = client.post("/validate", json={"data": {"action": "dropTable"}}).json()
        assert data["valid"] is False
        assert data["errors"] == ["Unknown action: dropTable"]


# ---------------------------------------------------------------------------
# GET /schemas
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestSchemas:
    def test_list(self, client: TestClient) -> None:
        data = client.get("/schemas").json()
        assert "addRow" in data["actions"]
        assert set(data["schemas"]) == set(data["actions"])

    def test_one(self, client: TestClient) -> None:
        resp = client.get("/schemas/updateCell")
        assert resp.status_code == 200
        assert "range" in resp.json()["required"]

    def test_unknown(self, client: TestClient) -> None:
        resp = client.get("/schemas/dropTable")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Unknown action: dropTable"


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestAuth:
    def test_missing_token(self, auth_client: TestClient) -> None:
        resp = auth_client.post("/normalize", json={"raw": '{"action": "health"}'})
        assert resp.status_code == 401

    def test_wrong_token(self, auth_client: TestClient) -> None:
        resp = auth_client.post(
            "/validate",
            json={"data": {"action": "health"}},
            headers={"Authorization": "Bearer nope"},
        )
        assert resp.status_code == 401

    def test_valid_token(self, auth_client: TestClient) -> None:
        resp = auth_client.post(
            "/normalize",
            json={"raw": '{"action": "health"}'},
            headers={"Authorization": "Bearer secret-token"},
        )
        assert resp.status_code == 200
        assert resp.json()["ok"] is True

    def test_health_needs_no_token(self, auth_client: TestClient) -> None:
        assert auth_client.get("/health").status_code == 200
