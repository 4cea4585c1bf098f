"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via CODEX_* env vars,
or layer a YAML file on top with yaml_config.load_yaml_config().
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from .model_availability import DEFAULT_MODEL_FALLBACK, KNOWN_MODELS, LAST_RESORT_MODEL
from .session_store import DEFAULT_MAX_SESSIONS, DEFAULT_SESSION_TTL_SECONDS

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r (using %s)", name, raw, default)
        return default
    if value < minimum:
        logger.warning("Ignoring out-of-range %s=%r (using %s)", name, raw, default)
        return default
    return value


@dataclass
class BridgeConfig:
    """Codex bridge configuration."""

    # Codex CLI binary (name on PATH or absolute path).
    command: str = "codex"

    # Model used when the caller does not request one. None means
    # "walk the fallback chain".
    default_model: str | None = None
    known_models: list[str] = field(default_factory=lambda: list(KNOWN_MODELS))
    model_fallback: list[str] = field(
        default_factory=lambda: list(DEFAULT_MODEL_FALLBACK)
    )
    last_resort_model: str = LAST_RESORT_MODEL

    # Sessions
    session_ttl_seconds: float = float(DEFAULT_SESSION_TTL_SECONDS)
    max_sessions: int = DEFAULT_MAX_SESSIONS

    # Execution. Set timeout to 0 to disable it.
    timeout_seconds: float = 600.0
    max_output_bytes: int = 10 * 1024 * 1024
    # Extra attempts for retryable failures (rate limit, timeout, network).
    max_retries: int = 0

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Load configuration from CODEX_* environment variables."""
        codex_vars = {
            k: v for k, v in os.environ.items()
            if k.startswith("CODEX_") and "KEY" not in k
        }
        if codex_vars:
            logger.info(
                "BridgeConfig.from_env: CODEX_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(codex_vars.items())),
            )
        else:
            logger.debug("BridgeConfig.from_env: no CODEX_* env vars set, using defaults")

        config = cls(
            command=os.getenv("CODEX_COMMAND") or cls.command,
            default_model=os.getenv("CODEX_DEFAULT_MODEL") or None,
            session_ttl_seconds=_env_int(
                "CODEX_SESSION_TTL_MS", int(DEFAULT_SESSION_TTL_SECONDS * 1000),
            ) / 1000.0,
            max_sessions=_env_int("CODEX_MAX_SESSIONS", DEFAULT_MAX_SESSIONS),
            timeout_seconds=_env_int(
                "CODEX_TIMEOUT_MS", int(cls.timeout_seconds * 1000),
            ) / 1000.0,
            max_output_bytes=_env_int("CODEX_MAX_OUTPUT_BYTES", cls.max_output_bytes),
            max_retries=_env_int("CODEX_MAX_RETRIES", cls.max_retries, minimum=0),
            log_level=os.getenv("CODEX_BRIDGE_LOG_LEVEL", cls.log_level).upper(),
        )
        logger.debug(
            "BridgeConfig.from_env: command=%s ttl=%ss max_sessions=%d timeout=%ss",
            config.command, config.session_ttl_seconds,
            config.max_sessions, config.timeout_seconds,
        )
        return config
