"""LLM layer — vendor-neutral chat clients used by the secondary-model strategy."""

from sheetguard.llm.cache import TTLCache
from sheetguard.llm.client import LLMClient, LLMMessage, LLMResponse, NullLLMClient
from sheetguard.llm.providers import build_provider

__all__ = [
    "LLMClient",
    "LLMMessage",
    "LLMResponse",
    "NullLLMClient",
    "TTLCache",
    "build_provider",
]
