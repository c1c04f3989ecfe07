"""LLM layer — Chat client interface.

The secondary-model strategy reaches a language model only through
``LLMClient``.  Concrete clients live in ``sheetguard.llm.providers`` and are
chosen by ``build_provider()`` from the ``secondary_model`` config block.

A client either answers or raises once its own retries are spent; the
recovery loop turns the exception into a failed attempt.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class LLMMessage:
    role: Role
    content: str

    @classmethod
    def system(cls, content: str) -> LLMMessage:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> LLMMessage:
        return cls(role="user", content=content)


@dataclass
class LLMResponse:
    """One completion.  ``raw`` keeps the decoded provider body for debugging."""

    content: str
    model: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class LLMClient(ABC):
    """Async chat-completion client."""

    @property
    def available(self) -> bool:
        """Whether a provider stands behind this client at all."""
        return True

    @abstractmethod
    async def chat(
        self,
        messages: list[LLMMessage],
        *,
        temperature: float = 0.0,
        max_tokens: int = 1024,
        timeout: float = 30.0,
    ) -> LLMResponse: ...

    @abstractmethod
    async def close(self) -> None: ...


class NullLLMClient(LLMClient):
    """Stand-in when no secondary model is configured.

    ``available`` is False, so the recovery loop skips the strategy without
    calling ``chat``.  A direct call gets an empty reply.
    """

    @property
    def available(self) -> bool:
        return False

    async def chat(
        self,
        messages: list[LLMMessage],
        *,
        temperature: float = 0.0,
        max_tokens: int = 1024,
        timeout: float = 30.0,
    ) -> LLMResponse:
        return LLMResponse(content="", model="null")

    async def close(self) -> None:
        return None
