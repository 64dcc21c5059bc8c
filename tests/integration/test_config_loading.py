"""Integration tests for configuration loading with layered precedence.

Tests the real load_config() function with actual YAML files, environment
variables, and CLI overrides to verify precedence: defaults < YAML < ENV < CLI.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from hlsrelay.domain.entities import RelayTarget
from hlsrelay.infrastructure.config.load import load_config
from hlsrelay.infrastructure.relay import RefererResolver

pytestmark = pytest.mark.integration


@pytest.fixture()
def yaml_config(tmp_path: Path) -> Path:
    """Write a minimal YAML config and return its path."""
    config = {
        "app_name": "hlsrelay-test",
        "environment": "test",
        "http": {
            "timeout_seconds": 15.0,
            "user_agent": "TestAgent/1.0",
        },
        "logging": {"level": "DEBUG", "format": "console"},
        "relay": {
            "public_base_url": "https://relay.example/",
            "referer_rules": [
                {"referer": "https://newcdn.example/", "patterns": ["NewCdn"]},
            ],
            "referer_candidates": ["https://fallback.example/"],
            "segment_max_age_seconds": 60,
        },
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(config), encoding="utf-8")
    return path


class TestDefaultsOnly:
    """Load with no YAML, no ENV, no CLI: pure defaults."""

    def test_defaults_produce_valid_config(self) -> None:
        config = load_config()
        assert config.app_name == "hlsrelay"
        assert config.environment == "dev"
        assert config.http_timeout_seconds == 25.0
        assert config.log_level == "INFO"
        assert config.log_format == "console"  # dev → console
        assert config.relay.public_base_url is None
        assert config.relay.delegate_base_url is None
        assert config.relay.segment_max_age_seconds == 3600
        assert config.relay.preflight_max_age_seconds == 86400

    def test_default_rule_table_order(self) -> None:
        rules = load_config().relay.build_rules()
        assert [r.referer for r in rules] == [
            "https://megacloud.blog/",
            "https://vidcloud.blog/",
            "https://hianime.to/",
            "https://gogoanime.cl/",
            "https://animepahe.ru/",
        ]

    def test_defaults_derive_log_format_from_environment(self) -> None:
        config = load_config(cli_overrides={"environment": "prod"})
        assert config.log_format == "json"


class TestYamlOverrides:
    """YAML values override defaults."""

    def test_yaml_overrides_defaults(self, yaml_config: Path) -> None:
        config = load_config(config_path=yaml_config)
        assert config.app_name == "hlsrelay-test"
        assert config.http_timeout_seconds == 15.0
        assert config.http_user_agent == "TestAgent/1.0"
        assert config.log_level == "DEBUG"
        assert config.relay.public_base_url == "https://relay.example"
        assert config.relay.segment_max_age_seconds == 60

    def test_yaml_rule_table_replaces_defaults(self, yaml_config: Path) -> None:
        relay = load_config(config_path=yaml_config).relay
        resolver = RefererResolver(
            rules=relay.build_rules(),
            default_referer=relay.default_referer,
            candidates=relay.build_candidates(),
        )
        assert resolver.resolve("edge1.newcdn.example").referer == (
            "https://newcdn.example/"
        )
        # Rules are replaced, not merged.
        assert resolver.resolve("kwik.cx").referer == "https://megacloud.blog/"
        target = RelayTarget.parse("https://edge1.newcdn.example/a.ts")
        assert [c.referer for c in resolver.candidates_for(target)] == [
            "https://fallback.example/",
            "https://edge1.newcdn.example/",
        ]

    def test_rule_table_mapping_shorthand(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.yaml"
        path.write_text(
            "relay:\n"
            "  referer_rules:\n"
            "    https://first.example/: [alpha, beta]\n"
            "    https://second.example/: gamma\n",
            encoding="utf-8",
        )

        rules = load_config(config_path=path).relay.build_rules()

        assert [(r.referer, r.patterns) for r in rules] == [
            ("https://first.example/", ("alpha", "beta")),
            ("https://second.example/", ("gamma",)),
        ]

    def test_yaml_file_not_found_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(config_path=tmp_path / "nonexistent.yaml")

    def test_invalid_referer_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text(
            yaml.dump({"relay": {"default_referer": "megacloud.blog"}}),
            encoding="utf-8",
        )
        with pytest.raises(ValidationError):
            load_config(config_path=path)

    def test_yaml_partial_override_preserves_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "partial.yaml"
        path.write_text(yaml.dump({"http": {"timeout_seconds": 99.0}}), encoding="utf-8")

        config = load_config(config_path=path)
        assert config.http_timeout_seconds == 99.0
        assert config.http_follow_redirects is True  # default preserved
        assert len(config.relay.referer_rules) == 5  # default preserved


class TestEnvOverrides:
    """Environment variables override YAML and defaults."""

    def test_env_overrides_yaml(
        self, yaml_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("HLSRELAY_LOG_LEVEL", "WARNING")
        monkeypatch.setenv("HLSRELAY_PUBLIC_BASE_URL", "https://other.example")

        config = load_config(config_path=yaml_config)
        assert config.log_level == "WARNING"
        assert config.relay.public_base_url == "https://other.example"
        # YAML values not overridden by ENV stay
        assert config.relay.segment_max_age_seconds == 60

    def test_delegate_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HLSRELAY_DELEGATE_BASE_URL", "https://primary.example/")
        monkeypatch.setenv("HLSRELAY_DELEGATE_TIMEOUT_SECONDS", "8")

        relay = load_config().relay
        assert relay.delegate_base_url == "https://primary.example"
        assert relay.delegate_timeout_seconds == 8.0

    def test_dotenv_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("HLSRELAY_ABSOLUTE_PLAYLIST_URLS", raising=False)
        dotenv = tmp_path / ".env"
        dotenv.write_text("HLSRELAY_ABSOLUTE_PLAYLIST_URLS=true\n", encoding="utf-8")
        try:
            config = load_config(dotenv_path=dotenv)
        finally:
            os.environ.pop("HLSRELAY_ABSOLUTE_PLAYLIST_URLS", None)
        assert config.relay.absolute_playlist_urls is True


class TestCliOverrides:
    """CLI overrides beat everything (highest precedence)."""

    def test_cli_overrides_yaml_and_env(
        self, yaml_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("HLSRELAY_LOG_LEVEL", "WARNING")

        config = load_config(
            config_path=yaml_config,
            cli_overrides={"log_level": "ERROR"},
        )
        assert config.log_level == "ERROR"

    def test_cli_delegate_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HLSRELAY_DELEGATE_BASE_URL", "https://env.example")

        config = load_config(cli_overrides={"delegate_base_url": "https://cli.example"})
        assert config.relay.delegate_base_url == "https://cli.example"

    def test_cli_overrides_with_sectioned_format(self, yaml_config: Path) -> None:
        config = load_config(
            config_path=yaml_config,
            cli_overrides={"http": {"timeout_seconds": 5.0}},
        )
        assert config.http_timeout_seconds == 5.0
