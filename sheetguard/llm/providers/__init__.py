"""LLM layer — HTTP chat providers and the factory that picks one.

``provider`` in the ``secondary_model`` config block selects the class:

    openai      OpenAILLMClient       (also Azure and compatible servers)
    openrouter  OpenRouterLLMClient   (model fallback)
    anthropic   AnthropicLLMClient
    ollama      OllamaLLMClient       (local, no key)
    null        NullLLMClient         (strategy disabled)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from sheetguard.llm.cache import TTLCache
from sheetguard.llm.client import LLMClient, NullLLMClient
from sheetguard.llm.providers.anthropic import AnthropicLLMClient
from sheetguard.llm.providers.base import BaseHTTPLLMClient
from sheetguard.llm.providers.ollama import OllamaLLMClient
from sheetguard.llm.providers.openai import OpenAILLMClient
from sheetguard.llm.providers.openrouter import OpenRouterLLMClient

if TYPE_CHECKING:
    from sheetguard.config import SecondaryModelConfig

__all__ = [
    "PROVIDERS",
    "AnthropicLLMClient",
    "BaseHTTPLLMClient",
    "OllamaLLMClient",
    "OpenAILLMClient",
    "OpenRouterLLMClient",
    "build_provider",
]

PROVIDERS: dict[str, type[BaseHTTPLLMClient]] = {
    "openai": OpenAILLMClient,
    "openrouter": OpenRouterLLMClient,
    "anthropic": AnthropicLLMClient,
    "ollama": OllamaLLMClient,
}


def build_provider(
    cfg: SecondaryModelConfig,
    *,
    model_cache: TTLCache[list[str]] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> LLMClient:
    """Instantiate the configured provider.

    A provider that lacks credentials (``cfg.enabled`` is False) yields a
    ``NullLLMClient``, so recovery skips the strategy rather than failing on
    every request.

    Raises:
        ValueError: For a provider name outside ``PROVIDERS``.
    """
    if cfg.provider == "null" or not cfg.enabled:
        return NullLLMClient()
    try:
        provider_cls = PROVIDERS[cfg.provider]
    except KeyError:
        raise ValueError(f"Unknown secondary model provider: {cfg.provider!r}") from None

    kwargs: dict[str, Any] = {
        "api_key": cfg.api_key or "",
        "api_base_url": cfg.api_base_url or "",
        "model": cfg.model,
        "timeout": cfg.timeout_seconds,
        "max_retries": cfg.max_retries,
        "transport": transport,
    }
    if provider_cls is OpenRouterLLMClient:
        kwargs.update(
            fallback_models=cfg.fallback_models,
            model_cache=model_cache or TTLCache(ttl_seconds=cfg.model_cache_ttl_seconds),
            app_name=cfg.app_name,
            app_url=cfg.app_url,
        )
    return provider_cls(**kwargs)
