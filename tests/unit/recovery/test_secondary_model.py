"""Unit tests — SecondaryModelStrategy.

Coverage targets:
  - Reply parsing (plain JSON, fenced JSON, empty, prose)
  - Prompt contents (vocabulary, expected action, headers, validation errors)
  - is_configured() follows the client's availability
"""

from __future__ import annotations

import pytest

from conftest import FailingLLMClient, MockLLMClient
from sheetguard.exceptions import ConfigurationUnavailableError, ModelResponseError
from sheetguard.llm.client import NullLLMClient
from sheetguard.protocol.models import ActionKind, RecoveryMethod, RequestContext
from sheetguard.recovery.secondary_model import SecondaryModelStrategy


@pytest.mark.unit
class TestReplyParsing:
    @pytest.mark.asyncio
    async def test_plain_json_reply(self) -> None:
        client = MockLLMClient('{"action": "updateCell", "range": "B5", "data": {"value": 42}}')
        strategy = SecondaryModelStrategy(client)

        result = await strategy.extract("Update cell B5 to 42", RequestContext())

        assert result == {"action": "updateCell", "range": "B5", "data": {"value": 42}}
        assert client.call_count == 1

    @pytest.mark.asyncio
    async def test_fenced_reply(self) -> None:
        client = MockLLMClient('```json\n{"action": "listTabs"}\n```')
        result = await SecondaryModelStrategy(client).extract("list tabs", RequestContext())
        assert result == {"action": "listTabs"}

    @pytest.mark.asyncio
    async def test_reply_with_trailing_comma(self) -> None:
        client = MockLLMClient('{"action": "health",}')
        result = await SecondaryModelStrategy(client).extract("ping", RequestContext())
        assert result == {"action": "health"}

    @pytest.mark.asyncio
    async def test_empty_reply(self) -> None:
        strategy = SecondaryModelStrategy(MockLLMClient("   "))
        with pytest.raises(ModelResponseError, match="empty reply"):
            await strategy.extract("x", RequestContext())

    @pytest.mark.asyncio
    async def test_prose_reply(self) -> None:
        strategy = SecondaryModelStrategy(MockLLMClient("I cannot help with that"))
        with pytest.raises(ModelResponseError, match="not a JSON object") as exc:
            await strategy.extract("x", RequestContext())
        assert exc.value.raw_response == "I cannot help with that"

    @pytest.mark.asyncio
    async def test_client_errors_propagate(self) -> None:
        client = FailingLLMClient()
        with pytest.raises(ConnectionError):
            await SecondaryModelStrategy(client).extract("x", RequestContext())
        assert client.call_count == 1


@pytest.mark.unit
class TestPrompt:
    def test_system_prompt_lists_vocabulary(self) -> None:
        prompt = SecondaryModelStrategy(MockLLMClient()).system_prompt
        for name in ("listTabs", "fetchTabData", "updateCell", "addRow", "readRange", "discoverAll"):
            assert f"- {name}:" in prompt
        assert "JSON" in prompt

    @pytest.mark.asyncio
    async def test_user_message_carries_hints(self) -> None:
        client = MockLLMClient('{"action": "addRow", "data": {"Product": "iPhone"}}')
        context = RequestContext(
            expected_action=ActionKind.ADD_ROW,
            headers=["Product", "Price"],
            validation_errors=["Missing required field: data"],
        )

        await SecondaryModelStrategy(client).extract("add iPhone", context)

        system, user = client.last_messages
        assert system.role == "system"
        assert user.role == "user"
        assert user.content.startswith("Instruction:\nadd iPhone")
        assert "Expected action: addRow" in user.content
        assert "Column headers: Product, Price" in user.content
        assert "A previous attempt failed validation:\n- Missing required field: data" in user.content

    @pytest.mark.asyncio
    async def test_dict_input_is_serialized(self) -> None:
        client = MockLLMClient('{"action": "health"}')
        await SecondaryModelStrategy(client).extract({"op": "ping"}, RequestContext())
        assert client.last_messages[1].content == 'Instruction:\n{"op": "ping"}'

    @pytest.mark.asyncio
    async def test_long_input_is_truncated(self) -> None:
        client = MockLLMClient('{"action": "health"}')
        await SecondaryModelStrategy(client).extract("x" * 9000, RequestContext())
        assert client.last_messages[1].content.endswith("…[truncated]")


@pytest.mark.unit
class TestAvailability:
    def test_method(self) -> None:
        assert SecondaryModelStrategy(MockLLMClient()).method is RecoveryMethod.SECONDARY_MODEL

    def test_null_client_is_unconfigured(self) -> None:
        strategy = SecondaryModelStrategy(NullLLMClient())
        assert strategy.is_configured() is False
        assert strategy.unavailable_reason() == "no secondary model provider configured"

    @pytest.mark.asyncio
    async def test_extract_on_null_client_raises(self) -> None:
        with pytest.raises(ConfigurationUnavailableError):
            await SecondaryModelStrategy(NullLLMClient()).extract("x", RequestContext())
