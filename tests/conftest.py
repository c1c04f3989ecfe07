"""Shared pytest fixtures for the sheetguard test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from typing import Any

import pytest

from sheetguard.config import Settings, override_settings
from sheetguard.llm.client import LLMClient, LLMMessage, LLMResponse
from sheetguard.protocol.models import CandidateAction, RecoveryMethod, RequestContext
from sheetguard.protocol.parser import ActionParser
from sheetguard.protocol.validator import SchemaValidator
from sheetguard.recovery.base import RecoveryStrategy

# A well-formed 44-character spreadsheet ID.
SPREADSHEET_ID = "1BxiMVs0XRA5nFMdKvBdBZjgmUUqptlbs74OgvE2upms"
SHEET_URL = f"https://docs.google.com/spreadsheets/d/{SPREADSHEET_ID}/edit#gid=0"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Iterator[Settings]:
    """Rules-only settings, installed as the process-wide settings for the test."""
    settings = Settings(logging={"level": "debug", "format": "console", "file": None})
    override_settings(settings)
    yield settings
    override_settings(Settings())


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@pytest.fixture
def action_parser() -> ActionParser:
    return ActionParser()


@pytest.fixture
def validator() -> SchemaValidator:
    return SchemaValidator()


@pytest.fixture
def update_cell_action() -> CandidateAction:
    return {
        "action": "updateCell",
        "spreadsheetId": SPREADSHEET_ID,
        "tabName": "Sheet1",
        "range": "B5",
        "data": {"value": "Updated Value"},
    }


# ---------------------------------------------------------------------------
# LLM and recovery doubles
# ---------------------------------------------------------------------------


class MockLLMClient(LLMClient):
    """Answers every chat with *content* (or raises *error*) and keeps the conversations."""

    def __init__(self, content: str = "", *, error: Exception | None = None) -> None:
        self._content = content
        self._error = error
        self.conversations: list[list[LLMMessage]] = []

    @property
    def call_count(self) -> int:
        return len(self.conversations)

    @property
    def last_messages(self) -> list[LLMMessage]:
        return self.conversations[-1] if self.conversations else []

    async def chat(self, messages: list[LLMMessage], **kwargs: Any) -> LLMResponse:
        self.conversations.append(list(messages))
        if self._error is not None:
            raise self._error
        return LLMResponse(content=self._content, model="mock-model")

    async def close(self) -> None:
        return None


class FailingLLMClient(MockLLMClient):
    def __init__(self) -> None:
        super().__init__(error=ConnectionError("LLM service unavailable"))


class StubStrategy(RecoveryStrategy):
    """Recovery strategy returning a fixed candidate (or raising a fixed error)."""

    def __init__(
        self,
        method: RecoveryMethod,
        result: Any = None,
        *,
        error: Exception | None = None,
        delay: float = 0.0,
        timeout: float = 1.0,
        configured: bool = True,
    ) -> None:
        super().__init__(timeout)
        self.method = method
        self._result = result
        self._error = error
        self._delay = delay
        self._configured = configured
        self.call_count = 0
        self.closed = False
        self.last_context: RequestContext | None = None

    def is_configured(self) -> bool:
        return self._configured

    async def extract(self, raw: str | dict[str, Any], context: RequestContext) -> Any:
        self.call_count += 1
        self.last_context = context
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._result

    async def close(self) -> None:
        self.closed = True
