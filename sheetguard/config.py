"""SheetGuard — Configuration.

Configuration is loaded from (in order of increasing priority):
    1. Built-in defaults (this file)
    2. System config: /etc/sheetguard/config.yaml
    3. User config:   ~/.sheetguard/config.yaml
    4. Explicit file passed to ``Settings.load(config_file=...)``
    5. Environment variables prefixed with SHEETGUARD_

Nested blocks use ``__`` as the delimiter, e.g.
``SHEETGUARD_EXTERNAL__URL=https://normalizer.internal``.

A recovery strategy whose block is incomplete (no URL, no provider) is not an
error: the Hidden Parser skips it and falls through to the next one.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_SEARCH_PATH = (
    Path("/etc/sheetguard/config.yaml"),
    Path.home() / ".sheetguard" / "config.yaml",
)


# ---------------------------------------------------------------------------
# Sub-configuration blocks
# ---------------------------------------------------------------------------


class ExternalNormalizerConfig(BaseModel):
    url: str | None = Field(
        default=None,
        description="Base URL of the normalization service. None = strategy disabled.",
    )
    api_key: str | None = Field(default=None, description="Bearer token sent to the service.")
    timeout_seconds: Annotated[float, Field(gt=0, le=120)] = 15.0
    max_retries: Annotated[int, Field(ge=0, le=5)] = 2
    retry_delay_seconds: Annotated[float, Field(ge=0, le=10)] = 0.5
    # Deadline for the whole strategy; HTTP attempts and backoff are fitted inside it.
    strategy_timeout_seconds: Annotated[float, Field(gt=0, le=120)] = 15.0

    @field_validator("url", mode="before")
    @classmethod
    def empty_url_is_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def enabled(self) -> bool:
        return self.url is not None


class SecondaryModelConfig(BaseModel):
    provider: Literal["null", "openai", "openrouter", "anthropic", "ollama"] = Field(
        default="null",
        description="'null' disables the secondary-model recovery strategy.",
    )
    model: str = Field(default="", description="Model ID. Empty = the provider's default model.")
    fallback_models: list[str] = Field(
        default_factory=list,
        description="Models tried in order when the primary model errors (openrouter only).",
    )
    api_key: str | None = None
    api_base_url: str | None = None
    timeout_seconds: Annotated[float, Field(gt=0, le=300)] = 30.0
    max_retries: Annotated[int, Field(ge=0, le=5)] = 2
    temperature: Annotated[float, Field(ge=0.0, le=2.0)] = 0.1
    max_tokens: Annotated[int, Field(ge=64, le=8192)] = 1024
    model_cache_ttl_seconds: Annotated[float, Field(ge=0)] = 300.0
    app_name: str = "SheetGuard"
    app_url: str | None = Field(
        default=None,
        description="Sent as HTTP-Referer to OpenRouter for attribution.",
    )

    @property
    def enabled(self) -> bool:
        if self.provider == "null":
            return False
        # Ollama runs locally without credentials.
        if self.provider == "ollama":
            return True
        return bool(self.api_key)


class RulesConfig(BaseModel):
    enabled: bool = True
    timeout_seconds: Annotated[float, Field(gt=0, le=30)] = 2.0


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(default=40100, ge=1024, le=65535)
    api_token: str | None = Field(
        default=None,
        description="Bearer token required on POST routes. None = no auth (local only).",
    )
    max_raw_length: Annotated[int, Field(ge=256, le=1_048_576)] = Field(
        default=65_536,
        description="Maximum size in characters of the ``raw`` field accepted by /normalize.",
    )


class LoggingConfig(BaseModel):
    level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    format: Literal["json", "console"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SHEETGUARD_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    external: ExternalNormalizerConfig = Field(default_factory=ExternalNormalizerConfig)
    secondary_model: SecondaryModelConfig = Field(default_factory=SecondaryModelConfig)
    rules: RulesConfig = Field(default_factory=RulesConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_file: Path | None = None) -> Settings:
        """Merge the YAML config files, then apply ``SHEETGUARD_*`` variables on top.

        Files are merged key by key, so a user file that only sets
        ``server.port`` keeps the rest of the system file's ``server`` block.
        """
        data: dict[str, Any] = {}
        for path in [*CONFIG_SEARCH_PATH, *([config_file] if config_file else [])]:
            if path.is_file():
                data = _deep_merge(data, _read_yaml(path))
        # Constructor arguments outrank the environment in pydantic-settings,
        # so collect what the environment sets and merge it last.
        from_env = cls().model_dump(exclude_unset=True)
        return cls(**_deep_merge(data, from_env))

    def enabled_strategies(self) -> list[str]:
        """Return the recovery methods that can run with this configuration."""
        methods: list[str] = []
        if self.external.enabled:
            methods.append("external")
        if self.secondary_model.enabled:
            methods.append("secondary_model")
        if self.rules.enabled:
            methods.append("rules")
        return methods


# Process-wide settings, loaded on first use.
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def override_settings(settings: Settings) -> None:
    """Replace the module-level singleton. Used in tests."""
    global _settings
    _settings = settings


def _read_yaml(path: Path) -> dict[str, Any]:
    import yaml

    with path.open(encoding="utf-8") as f:
        loaded = yaml.safe_load(f)
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"{path}: expected a mapping at the top level, got {type(loaded).__name__}")
    return loaded


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
