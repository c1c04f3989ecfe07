"""Unit tests — Settings loading (defaults, YAML, environment)."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

import sheetguard.config as config_module
from sheetguard.config import (
    ExternalNormalizerConfig,
    SecondaryModelConfig,
    Settings,
    get_settings,
    override_settings,
)


@pytest.mark.unit
class TestDefaults:
    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.external.url is None
        assert settings.external.strategy_timeout_seconds == 15.0
        assert settings.secondary_model.provider == "null"
        assert settings.rules.enabled is True
        assert settings.server.port == 40100
        assert settings.server.max_raw_length == 65_536

    def test_only_rules_enabled_by_default(self) -> None:
        assert Settings().enabled_strategies() == ["rules"]

    def test_all_strategies(self) -> None:
        settings = Settings(
            external={"url": "http://normalizer.test"},
            secondary_model={"provider": "ollama"},
        )
        assert settings.enabled_strategies() == ["external", "secondary_model", "rules"]


@pytest.mark.unit
class TestSubConfigs:
    def test_blank_url_disables_external(self) -> None:
        cfg = ExternalNormalizerConfig(url="   ")
        assert cfg.url is None
        assert cfg.enabled is False

    @pytest.mark.parametrize(
        ("provider", "api_key", "enabled"),
        [
            ("null", "sk", False),
            ("openai", None, False),
            ("openai", "sk", True),
            ("anthropic", "sk-ant", True),
            ("ollama", None, True),
        ],
    )
    def test_secondary_model_enabled(self, provider: str, api_key: str | None, enabled: bool) -> None:
        assert SecondaryModelConfig(provider=provider, api_key=api_key).enabled is enabled

    def test_unknown_provider_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SecondaryModelConfig(provider="bogus")

    def test_max_tokens_bounds(self) -> None:
        with pytest.raises(ValidationError):
            SecondaryModelConfig(max_tokens=10)

    def test_max_raw_length_floor(self) -> None:
        with pytest.raises(ValidationError):
            Settings(server={"max_raw_length": 10})


@pytest.mark.unit
class TestSources:
    def test_yaml_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "external:\n"
            "  url: http://normalizer.test\n"
            "  max_retries: 0\n"
            "rules:\n"
            "  timeout_seconds: 5\n"
        )

        settings = Settings.load(config_file)

        assert settings.external.url == "http://normalizer.test"
        assert settings.external.max_retries == 0
        assert settings.rules.timeout_seconds == 5.0

    def test_files_merge_block_by_key(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        system_file = tmp_path / "system.yaml"
        system_file.write_text("server:\n  host: 0.0.0.0\n  api_token: from-system\n")
        user_file = tmp_path / "user.yaml"
        user_file.write_text("server:\n  port: 41000\n")
        monkeypatch.setattr(config_module, "CONFIG_SEARCH_PATH", (system_file,))

        settings = Settings.load(user_file)

        assert settings.server.host == "0.0.0.0"
        assert settings.server.api_token == "from-system"
        assert settings.server.port == 41000

    def test_environment_beats_files(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("external:\n  url: http://file.test\n  max_retries: 0\n")
        monkeypatch.setenv("SHEETGUARD_EXTERNAL__URL", "http://env.test")

        settings = Settings.load(config_file)

        assert settings.external.url == "http://env.test"
        assert settings.external.max_retries == 0

    def test_non_mapping_file_rejected(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="expected a mapping"):
            Settings.load(config_file)

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        settings = Settings.load(tmp_path / "absent.yaml")
        assert settings.rules.enabled is True

    def test_environment_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SHEETGUARD_EXTERNAL__URL", "http://env.test")
        monkeypatch.setenv("SHEETGUARD_SECONDARY_MODEL__PROVIDER", "openai")
        monkeypatch.setenv("SHEETGUARD_SECONDARY_MODEL__API_KEY", "sk-env")

        settings = Settings()

        assert settings.external.url == "http://env.test"
        assert settings.secondary_model.enabled is True

    def test_override_settings(self) -> None:
        custom = Settings(rules={"enabled": False})
        override_settings(custom)
        try:
            assert get_settings() is custom
        finally:
            override_settings(Settings())
