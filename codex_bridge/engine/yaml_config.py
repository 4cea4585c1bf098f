"""YAML configuration loader.

Layers a YAML file over the environment-derived BridgeConfig. Keys
that are absent keep their env/default value.

Example YAML:
    engine:
      command: /opt/codex/bin/codex
      timeout_seconds: 900
      max_output_bytes: 20971520
      max_retries: 2
      log_level: DEBUG

    sessions:
      ttl_seconds: 43200
      max_sessions: 100

    models:
      default: gpt-5.3-codex
      known: [gpt-5.3-codex, gpt-5.2-codex, gpt-5.1-codex-max]
      fallback: [gpt-5.3-codex, gpt-5.2-codex]
      last_resort: gpt-5.2-codex
"""
from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from .config import BridgeConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

_ENGINE_KEYS: dict[str, tuple[str, type]] = {
    "command": ("command", str),
    "timeout_seconds": ("timeout_seconds", float),
    "max_output_bytes": ("max_output_bytes", int),
    "max_retries": ("max_retries", int),
    "log_level": ("log_level", str),
}

_SESSION_KEYS: dict[str, tuple[str, type]] = {
    "ttl_seconds": ("session_ttl_seconds", float),
    "max_sessions": ("max_sessions", int),
}

_MODEL_KEYS: dict[str, tuple[str, type]] = {
    "default": ("default_model", str),
    "known": ("known_models", list),
    "fallback": ("model_fallback", list),
    "last_resort": ("last_resort_model", str),
}


def _apply_section(
    path: Path,
    section_name: str,
    raw: Any,
    mapping: dict[str, tuple[str, type]],
    updates: dict[str, Any],
) -> None:
    if raw is None:
        return
    if not isinstance(raw, dict):
        raise ConfigError(str(path), f"'{section_name}' must be a mapping")
    for key, value in raw.items():
        target = mapping.get(key)
        if target is None:
            logger.warning("Unknown %s key %r in %s (ignored)", section_name, key, path)
            continue
        attr, kind = target
        if kind is list:
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ConfigError(str(path), f"{section_name}.{key} must be a list of strings")
            updates[attr] = list(value)
            continue
        try:
            updates[attr] = kind(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                str(path), f"{section_name}.{key}: expected {kind.__name__}, got {value!r}",
            ) from exc


def load_yaml_config(
    path: str | Path,
    base: BridgeConfig | None = None,
) -> BridgeConfig:
    """Load *path* and merge it over *base* (default: BridgeConfig.from_env())."""
    config_path = Path(path).expanduser()
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(str(config_path), str(exc)) from exc

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(str(config_path), f"YAML parse error: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(str(config_path), "top level must be a mapping")

    updates: dict[str, Any] = {}
    _apply_section(config_path, "engine", data.get("engine"), _ENGINE_KEYS, updates)
    _apply_section(config_path, "sessions", data.get("sessions"), _SESSION_KEYS, updates)
    _apply_section(config_path, "models", data.get("models"), _MODEL_KEYS, updates)

    for section in data:
        if section not in {"engine", "sessions", "models"}:
            logger.warning("Unknown config section %r in %s (ignored)", section, config_path)

    if "log_level" in updates:
        updates["log_level"] = updates["log_level"].upper()

    config = replace(base if base is not None else BridgeConfig.from_env(), **updates)
    logger.info(
        "Loaded config %s: command=%s default_model=%s max_sessions=%d",
        config_path, config.command, config.default_model, config.max_sessions,
    )
    return config
