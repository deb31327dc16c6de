"""
Configuration Tests
===================

Tests for YAML and environment configuration loading.
"""

import pytest

from abs_companion.config import ConfigurationError, load_config


ENV_VARS = (
    "ABS_HOST",
    "ABS_TOKEN",
    "MAX_PARALLEL",
    "CONVERSION_DELAY",
    "EMBED_METADATA",
    "CONVERSION_MATRIX",
    "ENCODE_LIBRARY",
    "DRY_RUN",
    "EXCLUDED_CODECS",
    "RESYNC_INTERVAL",
    "RECONNECT_DELAY",
    "PORT",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def missing_path(tmp_path):
    return str(tmp_path / "missing.yaml")


@pytest.fixture
def required_env(monkeypatch):
    monkeypatch.setenv("ABS_HOST", "http://abs.local:13378")
    monkeypatch.setenv("ABS_TOKEN", "tok")


class TestRequired:
    """Host and token are mandatory."""

    def test_missing_host_rejected(self, monkeypatch, missing_path):
        monkeypatch.setenv("ABS_TOKEN", "tok")
        with pytest.raises(ConfigurationError):
            load_config(missing_path)

    def test_missing_token_rejected(self, monkeypatch, missing_path):
        monkeypatch.setenv("ABS_HOST", "abs.local")
        with pytest.raises(ConfigurationError):
            load_config(missing_path)


class TestDefaults:
    """Defaults when only the required values are set."""

    def test_defaults(self, required_env, missing_path):
        settings = load_config(missing_path)

        d = settings.dispatch
        assert d.max_parallel == 1
        assert d.conversion_delay_ms == 15000
        assert d.conversion_delay_seconds == 15.0
        assert d.embed_metadata is False
        assert d.conversion_matrix == "copy|0|0"
        assert d.encode_library is False
        assert d.dry_run is False
        assert d.excluded_codecs == ["opus"]
        assert settings.session.handshake_delay_seconds == 1.0
        assert settings.session.reconnect_delay_seconds == 5.0
        assert settings.server.port == 8080

    def test_derived_urls(self, required_env, missing_path):
        settings = load_config(missing_path)

        assert settings.abs.socket_url == (
            "ws://abs.local:13378/socket.io/?EIO=4&transport=websocket"
        )
        assert settings.abs.api_base_url == "http://abs.local:13378"


class TestEnvironment:
    """Environment overrides."""

    def test_overrides(self, required_env, monkeypatch, missing_path):
        monkeypatch.setenv("MAX_PARALLEL", "3")
        monkeypatch.setenv("CONVERSION_DELAY", "500")
        monkeypatch.setenv("EXCLUDED_CODECS", "AAC, mp3,")
        monkeypatch.setenv("DRY_RUN", "1")
        monkeypatch.setenv("EMBED_METADATA", "true")
        monkeypatch.setenv("ENCODE_LIBRARY", "no")
        monkeypatch.setenv("CONVERSION_MATRIX", "mp3|0|0|0|0=opus|32000|1")

        d = load_config(missing_path).dispatch

        assert d.max_parallel == 3
        assert d.conversion_delay_seconds == 0.5
        assert d.excluded_codecs == ["aac", "mp3"]
        assert d.dry_run is True
        assert d.embed_metadata is True
        assert d.encode_library is False
        assert d.conversion_matrix == "mp3|0|0|0|0=opus|32000|1"

    @pytest.mark.parametrize("value", ["0", "-2", "abc"])
    def test_invalid_parallelism_rejected(self, required_env, monkeypatch, missing_path, value):
        monkeypatch.setenv("MAX_PARALLEL", value)
        with pytest.raises(ConfigurationError):
            load_config(missing_path)


class TestYaml:
    """YAML file loading."""

    def test_file_values_with_env_precedence(self, monkeypatch, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "abs:\n"
            "  host: https://abs.example.com\n"
            "  token: from-file\n"
            "dispatch:\n"
            "  max_parallel: 2\n"
            "  excluded_codecs: [opus, AAC]\n"
            "server:\n"
            "  port: 9000\n"
        )
        monkeypatch.setenv("ABS_TOKEN", "from-env")

        settings = load_config(str(path))

        assert settings.abs.host == "https://abs.example.com"
        assert settings.abs.token == "from-env"
        assert settings.dispatch.max_parallel == 2
        assert settings.dispatch.excluded_codecs == ["opus", "aac"]
        assert settings.server.port == 9000

    def test_invalid_yaml_rejected(self, required_env, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("dispatch: [unclosed\n")

        with pytest.raises(ConfigurationError):
            load_config(str(path))
