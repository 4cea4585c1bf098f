"""Tests for env-based configuration and the YAML overlay."""
from __future__ import annotations

import pytest

from codex_bridge.engine.config import BridgeConfig
from codex_bridge.engine.errors import ConfigError
from codex_bridge.engine.model_availability import DEFAULT_MODEL_FALLBACK, KNOWN_MODELS
from codex_bridge.engine.yaml_config import load_yaml_config

_ENV_VARS = (
    "CODEX_COMMAND",
    "CODEX_SESSION_TTL_MS",
    "CODEX_MAX_SESSIONS",
    "CODEX_TIMEOUT_MS",
    "CODEX_MAX_OUTPUT_BYTES",
    "CODEX_MAX_RETRIES",
    "CODEX_DEFAULT_MODEL",
    "CODEX_BRIDGE_LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestFromEnv:

    def test_defaults(self, clean_env):
        config = BridgeConfig.from_env()
        assert config.command == "codex"
        assert config.default_model is None
        assert config.session_ttl_seconds == 86400
        assert config.max_sessions == 50
        assert config.timeout_seconds == 600
        assert config.max_retries == 0
        assert config.log_level == "INFO"
        assert config.known_models == list(KNOWN_MODELS)
        assert config.model_fallback == list(DEFAULT_MODEL_FALLBACK)

    def test_overrides(self, clean_env):
        clean_env.setenv("CODEX_COMMAND", "/opt/codex")
        clean_env.setenv("CODEX_SESSION_TTL_MS", "60000")
        clean_env.setenv("CODEX_MAX_SESSIONS", "7")
        clean_env.setenv("CODEX_TIMEOUT_MS", "1500")
        clean_env.setenv("CODEX_MAX_RETRIES", "0")
        clean_env.setenv("CODEX_DEFAULT_MODEL", "gpt-5.2")
        clean_env.setenv("CODEX_BRIDGE_LOG_LEVEL", "debug")
        config = BridgeConfig.from_env()
        assert config.command == "/opt/codex"
        assert config.session_ttl_seconds == 60
        assert config.max_sessions == 7
        assert config.timeout_seconds == 1.5
        assert config.max_retries == 0
        assert config.default_model == "gpt-5.2"
        assert config.log_level == "DEBUG"

    @pytest.mark.parametrize("value", ["abc", "0", "-3"])
    def test_bad_integers_ignored(self, clean_env, value):
        clean_env.setenv("CODEX_MAX_SESSIONS", value)
        assert BridgeConfig.from_env().max_sessions == 50

    def test_negative_retries_ignored(self, clean_env):
        clean_env.setenv("CODEX_MAX_RETRIES", "-1")
        assert BridgeConfig.from_env().max_retries == 0


class TestYamlConfig:

    def test_sections_applied(self, tmp_path, clean_env):
        path = tmp_path / "bridge.yaml"
        path.write_text(
            "engine:\n"
            "  command: /usr/local/bin/codex\n"
            "  timeout_seconds: 900\n"
            "  max_retries: 2\n"
            "  log_level: warning\n"
            "sessions:\n"
            "  ttl_seconds: 3600\n"
            "  max_sessions: 10\n"
            "models:\n"
            "  default: gpt-5.2-codex\n"
            "  fallback: [gpt-5.2-codex, gpt-5.2]\n"
            "  last_resort: gpt-5.2\n"
        )
        config = load_yaml_config(path)
        assert config.command == "/usr/local/bin/codex"
        assert config.timeout_seconds == 900.0
        assert config.max_retries == 2
        assert config.log_level == "WARNING"
        assert config.session_ttl_seconds == 3600.0
        assert config.max_sessions == 10
        assert config.default_model == "gpt-5.2-codex"
        assert config.model_fallback == ["gpt-5.2-codex", "gpt-5.2"]
        assert config.last_resort_model == "gpt-5.2"
        assert config.known_models == list(KNOWN_MODELS)

    def test_overlays_base(self, tmp_path):
        path = tmp_path / "bridge.yaml"
        path.write_text("models:\n  default: gpt-5.2\n")
        base = BridgeConfig(command="custom", max_sessions=3)
        config = load_yaml_config(path, base=base)
        assert config.command == "custom"
        assert config.max_sessions == 3
        assert config.default_model == "gpt-5.2"
        assert base.default_model is None

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml_config(path, base=BridgeConfig()) == BridgeConfig()

    def test_unknown_keys_warn(self, tmp_path, caplog):
        path = tmp_path / "bridge.yaml"
        path.write_text("engine:\n  colour: blue\nextras:\n  a: 1\n")
        with caplog.at_level("WARNING"):
            config = load_yaml_config(path, base=BridgeConfig())
        assert config == BridgeConfig()
        assert "colour" in caplog.text
        assert "extras" in caplog.text

    @pytest.mark.parametrize("content", [
        "engine: [unclosed\n",
        "- just\n- a list\n",
        "engine: 5\n",
        "engine:\n  max_retries: lots\n",
        "models:\n  fallback: gpt-5.2\n",
    ])
    def test_malformed_raises(self, tmp_path, content):
        path = tmp_path / "bad.yaml"
        path.write_text(content)
        with pytest.raises(ConfigError):
            load_yaml_config(path, base=BridgeConfig())

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError) as excinfo:
            load_yaml_config(tmp_path / "nope.yaml", base=BridgeConfig())
        assert "nope.yaml" in str(excinfo.value)
