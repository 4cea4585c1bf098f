"""Model availability detection and default-model fallback chain.

Whether a model works depends on the installed CLI version and on the
user's account, so availability is checked by actually running a
trivial prompt against it. Results are cached for five minutes.
Unavailability never surfaces as an error: callers always get a
usable model name back.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from .executor import ProcessExecutor

logger = logging.getLogger(__name__)

_MODEL_CACHE_TTL_SECONDS = 5 * 60
_MODEL_PROBE_TIMEOUT = 5.0
_CLI_PROBE_TIMEOUT = 3.0

# Models exposed by the codex CLI.
KNOWN_MODELS: tuple[str, ...] = (
    "gpt-5.3-codex",
    "gpt-5.2-codex",
    "gpt-5.1-codex-max",
    "gpt-5.1-codex-mini",
    "gpt-5.2",
)

# Priority order for default model selection.
DEFAULT_MODEL_FALLBACK: tuple[str, ...] = (
    "gpt-5.3-codex",
    "gpt-5.2-codex",
    "gpt-5.1-codex-max",
)

# Returned when nothing in the fallback chain probes successfully.
LAST_RESORT_MODEL = "gpt-5.2-codex"


@dataclass
class ModelCacheEntry:
    available: bool
    timestamp: float


class ModelCache:
    """TTL cache of model availability probes.

    Shared across resolvers; concurrent writers simply overwrite each
    other since every entry is the result of an idempotent probe.
    """

    def __init__(
        self,
        ttl_seconds: float = _MODEL_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, ModelCacheEntry] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, model: str) -> bool | None:
        """Cached availability, or None when missing or stale."""
        entry = self._entries.get(model)
        if entry is None:
            return None
        if self._clock() - entry.timestamp >= self._ttl:
            self._entries.pop(model, None)
            return None
        return entry.available

    def set(self, model: str, available: bool) -> None:
        self._entries[model] = ModelCacheEntry(
            available=available, timestamp=self._clock(),
        )

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, model: str) -> bool:
        return self.get(model) is not None


class ModelAvailabilityResolver:
    """Decides which model name a codex invocation should use."""

    def __init__(
        self,
        executor: ProcessExecutor,
        command: str = "codex",
        *,
        cache: ModelCache | None = None,
        known_models: Sequence[str] = KNOWN_MODELS,
        fallback_chain: Sequence[str] = DEFAULT_MODEL_FALLBACK,
        last_resort: str = LAST_RESORT_MODEL,
        probe_timeout: float = _MODEL_PROBE_TIMEOUT,
        cli_probe_timeout: float = _CLI_PROBE_TIMEOUT,
    ) -> None:
        self._executor = executor
        self._command = command
        self._cache = cache if cache is not None else ModelCache()
        self._known_models = tuple(known_models)
        self._fallback_chain = tuple(fallback_chain)
        self._last_resort = last_resort
        self._probe_timeout = probe_timeout
        self._cli_probe_timeout = cli_probe_timeout

    @property
    def cache(self) -> ModelCache:
        return self._cache

    @property
    def known_models(self) -> tuple[str, ...]:
        return self._known_models

    def is_known(self, model: str) -> bool:
        return model in self._known_models

    async def is_available(self, model: str, bypass_cache: bool = False) -> bool:
        """Check whether *model* actually runs.

        A rejected model is cached negative. When the CLI itself does
        not run, nothing is cached since that may be transient.
        """
        if not bypass_cache:
            cached = self._cache.get(model)
            if cached is not None:
                logger.debug("Using cached availability for model %s: %s", model, cached)
                return cached

        logger.debug("Testing model availability: %s", model)
        result = await self._executor.run(
            self._command,
            ["exec", "-m", model, "echo test"],
            timeout=self._probe_timeout,
        )
        if result.success:
            logger.debug("Model %s is available (test execution succeeded)", model)
            self._cache.set(model, True)
            return True

        logger.debug("Model test failed for %s, checking codex CLI availability", model)
        cli_check = await self._executor.run(
            self._command, ["--version"], timeout=self._cli_probe_timeout,
        )
        if not cli_check.success:
            logger.warning(
                "Codex CLI availability check failed while probing %s: %s",
                model, (cli_check.stderr or "").strip(),
            )
            return False

        logger.warning(
            "Model %s test execution failed but codex CLI is working. "
            "Model may not exist or may not be accessible.",
            model,
        )
        self._cache.set(model, False)
        return False

    async def resolve_default(self) -> str:
        """First available model in the fallback chain, else the last resort."""
        for model in self._fallback_chain:
            if await self.is_available(model):
                logger.info("Selected default model: %s", model)
                return model
        logger.warning(
            "All default models unavailable, falling back to %s",
            self._last_resort,
        )
        return self._last_resort

    async def resolve_requested(self, model: str | None) -> str:
        """Return *model* if it is known and available, else the default."""
        if not model:
            return await self.resolve_default()
        if not self.is_known(model):
            logger.warning("Invalid model %r, falling back to default", model)
            return await self.resolve_default()
        if not await self.is_available(model):
            logger.warning("Model %r not available, falling back to default", model)
            return await self.resolve_default()
        return model

    async def available_models(self) -> list[str]:
        """Every known model that currently probes available."""
        return [m for m in self._known_models if await self.is_available(m)]
