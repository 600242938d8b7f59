"""Integration tests for configuration loading with layered precedence.

Tests the real load_config() function with actual YAML files, .env files,
environment variables, and CLI overrides to verify precedence:
defaults < YAML < ENV < CLI.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from vidrelay.infrastructure.config.load import load_config

pytestmark = pytest.mark.integration


@pytest.fixture()
def yaml_config(tmp_path: Path) -> Path:
    """Write a sectioned YAML config and return its path."""
    config = {
        "app_name": "vidrelay-test",
        "environment": "test",
        "http": {"timeout_seconds": 15.0, "user_agent": "TestAgent/1.0"},
        "logging": {"level": "DEBUG", "format": "console"},
        "cache": {"dir": str(tmp_path / "cache"), "ttl_seconds": 1800},
        "download": {"ffmpeg_path": "/opt/ffmpeg/bin/ffmpeg", "prefetch_depth": 4},
        "providers": {
            "default_headers": "cdn",
            "headers": {"cdn": {"referer": "https://embed.example/"}},
            "host_headers": {"cdn.example": "cdn"},
        },
        "addons": {
            "installed": [
                {"id": "a", "name": "A", "transport_url": "https://a.example"}
            ]
        },
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(config), encoding="utf-8")
    return path


class TestDefaultsOnly:
    def test_defaults_produce_valid_config(self) -> None:
        config = load_config()
        assert config.app_name == "vidrelay"
        assert config.environment == "dev"
        assert config.http_timeout_seconds == 30.0
        assert config.log_level == "INFO"
        assert config.log_format == "console"
        assert config.cache.ttl_seconds == 3600
        assert config.download.ffmpeg_path == "ffmpeg"
        assert config.download.strict_segments is False
        assert config.api_rate_limit_rpm == 0

    def test_default_header_bundle_exists(self) -> None:
        providers = load_config().providers
        assert providers.default_headers in providers.headers
        assert providers.bundle("no-such-provider") is providers.headers["collaps_cdn"]

    def test_prod_derives_json_logs(self) -> None:
        assert load_config(cli_overrides={"environment": "prod"}).log_format == "json"


class TestYamlOverrides:
    def test_sections_override_defaults(self, yaml_config: Path) -> None:
        config = load_config(config_path=yaml_config)
        assert config.app_name == "vidrelay-test"
        assert config.http_user_agent == "TestAgent/1.0"
        assert config.log_level == "DEBUG"
        assert config.cache.ttl_seconds == 1800
        assert config.download.ffmpeg_path == "/opt/ffmpeg/bin/ffmpeg"
        assert config.download.prefetch_depth == 4
        assert config.download.segment_retries == 3
        assert config.providers.bundle(None).referer == "https://embed.example/"
        assert config.providers.host_headers == {"cdn.example": "cdn"}
        assert [a.id for a in config.addons.installed] == ["a"]

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(config_path=tmp_path / "nonexistent.yaml")

    def test_non_mapping_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_config(config_path=path)

    def test_invalid_value_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.dump({"download": {"prefetch_depth": 0}}), encoding="utf-8")
        with pytest.raises(ValidationError):
            load_config(config_path=path)


class TestEnvOverrides:
    def test_env_overrides_yaml(
        self, yaml_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("VIDRELAY_LOG_LEVEL", "WARNING")
        monkeypatch.setenv("VIDRELAY_FFMPEG_PATH", "/usr/bin/ffmpeg")
        monkeypatch.setenv("VIDRELAY_STRICT_SEGMENTS", "true")

        config = load_config(config_path=yaml_config)
        assert config.log_level == "WARNING"
        assert config.download.ffmpeg_path == "/usr/bin/ffmpeg"
        assert config.download.strict_segments is True
        assert config.download.prefetch_depth == 4

    def test_dotenv_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("VIDRELAY_API_RATE_LIMIT_RPM=90\n", encoding="utf-8")
        # load_dotenv writes into os.environ; let monkeypatch restore it.
        monkeypatch.setenv("VIDRELAY_API_RATE_LIMIT_RPM", "")
        monkeypatch.delenv("VIDRELAY_API_RATE_LIMIT_RPM")

        config = load_config(dotenv_path=env_file)
        assert config.api_rate_limit_rpm == 90

    def test_missing_dotenv(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(dotenv_path=tmp_path / "missing.env")


class TestCliOverrides:
    def test_cli_beats_env(self, yaml_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VIDRELAY_LOG_LEVEL", "WARNING")
        config = load_config(config_path=yaml_config, cli_overrides={"log_level": "ERROR"})
        assert config.log_level == "ERROR"

    def test_sectioned_cli_override(self, yaml_config: Path) -> None:
        config = load_config(
            config_path=yaml_config,
            cli_overrides={"download": {"strict_segments": True}, "cache_dir": "/tmp/vr"},
        )
        assert config.download.strict_segments is True
        assert config.cache.directory == Path("/tmp/vr")
