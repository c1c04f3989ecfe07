"""Recovery — Secondary language model.

Asks a (usually small, cheap) model to rewrite the raw instruction as one
JSON action.  The reply goes through the same structural check and
normalization as primary output; the Hidden Parser then validates it.
"""

from __future__ import annotations

import json
from typing import Any

from sheetguard.exceptions import ConfigurationUnavailableError, ModelResponseError
from sheetguard.llm.client import LLMClient, LLMMessage
from sheetguard.logging import get_logger
from sheetguard.protocol.models import CandidateAction, RecoveryMethod, RequestContext
from sheetguard.protocol.parser import ActionParser
from sheetguard.protocol.schema import SchemaRegistry, get_schema_registry
from sheetguard.recovery.base import RecoveryStrategy

log = get_logger(__name__)

_SYSTEM_PROMPT_TEMPLATE = """\
You convert spreadsheet instructions into exactly one JSON action.  Respond \
with ONLY a valid JSON object: no explanations, no markdown fences.

Supported actions and their required fields:
{vocabulary}

Rules:
- "action" must be one of the names above, spelled exactly.
- updateCell takes "range" (one cell, A1 notation) and "data": {{"value": ...}}.
- addRow takes "data" as a column -> value object or a list of values.
- readRange takes "range" in A1 notation ("A1:C10", "B5" or "A:C").
- Extract spreadsheet IDs from URLs (the segment after /spreadsheets/d/).
- Never invent values.  Omit spreadsheetId, tabName and any other field the \
instruction does not state; they are filled in later from the user's selection.
- Strings starting with =, +, - or @ are formulas and are rejected."""

# Large raw payloads are truncated in the prompt; the tail rarely matters.
_MAX_RAW_CHARS = 8000


class SecondaryModelStrategy(RecoveryStrategy):
    """Second recovery strategy: a JSON-only chat completion.

    Args:
        client:      Any ``LLMClient``.  A ``NullLLMClient`` makes the strategy
                     unconfigured.
        registry:    Schema registry whose vocabulary is listed in the prompt.
        temperature: Sampling temperature (kept low for deterministic JSON).
        max_tokens:  Completion budget.
        timeout:     Strategy time budget in seconds.
    """

    method = RecoveryMethod.SECONDARY_MODEL

    def __init__(
        self,
        client: LLMClient,
        registry: SchemaRegistry | None = None,
        *,
        temperature: float = 0.1,
        max_tokens: int = 1024,
        timeout: float = 30.0,
        parser: ActionParser | None = None,
    ) -> None:
        super().__init__(timeout)
        self._client = client
        self._registry = registry or get_schema_registry()
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._parser = parser or ActionParser()
        self._system_prompt = _SYSTEM_PROMPT_TEMPLATE.format(vocabulary=self._registry.vocabulary())

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    def is_configured(self) -> bool:
        return self._client.available

    def unavailable_reason(self) -> str:
        return "no secondary model provider configured"

    async def extract(
        self,
        raw: str | dict[str, Any],
        context: RequestContext,
    ) -> CandidateAction:
        if not self._client.available:
            raise ConfigurationUnavailableError(self.method.value, self.unavailable_reason())

        response = await self._client.chat(
            [
                LLMMessage.system(self._system_prompt),
                LLMMessage.user(self._build_user_message(raw, context)),
            ],
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            timeout=self.timeout,
        )
        log.debug(
            "secondary_model_replied",
            model=response.model,
            latency_ms=response.latency_ms,
            tokens=response.total_tokens,
        )

        content = response.content.strip()
        if not content:
            raise ModelResponseError("Secondary model returned an empty reply", raw_response="")

        outcome = self._parser.parse(content)
        if not outcome.success or outcome.action is None:
            raise ModelResponseError(
                "Secondary model reply is not a JSON object: " + "; ".join(outcome.errors),
                raw_response=content,
            )
        return outcome.action

    def _build_user_message(self, raw: str | dict[str, Any], context: RequestContext) -> str:
        text = raw if isinstance(raw, str) else json.dumps(raw, ensure_ascii=False)
        if len(text) > _MAX_RAW_CHARS:
            text = text[:_MAX_RAW_CHARS] + " …[truncated]"

        parts = [f"Instruction:\n{text}"]
        if context.expected_action is not None:
            parts.append(f"Expected action: {context.expected_action.value}")
        if context.headers:
            parts.append("Column headers: " + ", ".join(context.headers))
        if context.validation_errors:
            parts.append(
                "A previous attempt failed validation:\n"
                + "\n".join(f"- {e}" for e in context.validation_errors)
            )
        return "\n\n".join(parts)

    async def close(self) -> None:
        await self._client.close()
