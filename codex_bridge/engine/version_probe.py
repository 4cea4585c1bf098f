"""Codex CLI version detection and feature gates.

Newer codex releases add flags (``--search``, ``--add-dir``,
``exec resume``) that older releases reject outright, so every
version-dependent token is emitted only after the installed version
has been checked against the gate for that feature.
"""
from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable

from .executor import ProcessExecutor
from .models import CapabilityGate, Version

logger = logging.getLogger(__name__)

_VERSION_CACHE_TTL_SECONDS = 5 * 60
_VERSION_PROBE_TIMEOUT = 5.0

# Optional tool-name token ("codex", "codex-cli") then optional "v".
_LEADING_VERSION_RE = re.compile(
    r"^\s*(?:[A-Za-z][\w.-]*\s+)?v?(\d+)\.(\d+)\.(\d+)"
)
_ANY_VERSION_RE = re.compile(r"(?<![\w.])v?(\d+)\.(\d+)\.(\d+)")


RESUME = CapabilityGate("RESUME", 0, 36, 0)
NATIVE_SEARCH = CapabilityGate("NATIVE_SEARCH", 0, 52, 0)
GPT5_1_MODELS = CapabilityGate("GPT5_1_MODELS", 0, 56, 0)
TOOL_TOKEN_LIMIT = CapabilityGate("TOOL_TOKEN_LIMIT", 0, 59, 0)
ADD_DIR = CapabilityGate("ADD_DIR", 0, 59, 0)
WINDOWS_AGENT = CapabilityGate("WINDOWS_AGENT", 0, 59, 0)

FEATURE_GATES: dict[str, CapabilityGate] = {
    gate.name: gate
    for gate in (
        RESUME,
        NATIVE_SEARCH,
        GPT5_1_MODELS,
        TOOL_TOKEN_LIMIT,
        ADD_DIR,
        WINDOWS_AGENT,
    )
}


def invalid_version(raw: str = "") -> Version:
    return Version(0, 0, 0, raw=raw, is_valid=False)


def parse_version(text: str) -> Version:
    """Parse the first ``major.minor.patch`` found in *text*.

    Accepts ``0.59.0``, ``v0.52.1``, ``codex 0.59.0`` and
    ``codex-cli v0.46.0``. Anything else yields an invalid Version
    with a zero triple; this never raises.
    """
    if not text:
        return invalid_version(text or "")
    match = _LEADING_VERSION_RE.match(text) or _ANY_VERSION_RE.search(text)
    if not match:
        return invalid_version(text)
    return Version(
        major=int(match.group(1)),
        minor=int(match.group(2)),
        patch=int(match.group(3)),
        raw=text.strip(),
        is_valid=True,
    )


def compare_versions(
    left: Version | CapabilityGate,
    right: Version | CapabilityGate,
) -> int:
    """Negative if left < right, zero if equal, positive if left > right."""
    a = _triple(left)
    b = _triple(right)
    if a[0] != b[0]:
        return a[0] - b[0]
    if a[1] != b[1]:
        return a[1] - b[1]
    return a[2] - b[2]


def meets_min_version(version: Version, gate: CapabilityGate) -> bool:
    """True iff *version* is valid and at least the gate threshold."""
    if not version.is_valid:
        logger.warning(
            "Invalid codex version %r, assuming %s is unavailable",
            version.raw, gate.name,
        )
        return False
    return compare_versions(version, gate) >= 0


def _triple(value: Version | CapabilityGate) -> tuple[int, int, int]:
    return (value.major, value.minor, value.patch)


class VersionProbe:
    """Resolves the installed codex version and evaluates feature gates.

    Probing spawns a process, so the result is cached for five minutes.
    One probe is constructed per process and shared by every builder.
    """

    def __init__(
        self,
        executor: ProcessExecutor,
        command: str = "codex",
        *,
        cache_ttl_seconds: float = _VERSION_CACHE_TTL_SECONDS,
        probe_timeout: float = _VERSION_PROBE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._executor = executor
        self._command = command
        self._cache_ttl = cache_ttl_seconds
        self._probe_timeout = probe_timeout
        self._clock = clock
        self._cached: Version | None = None
        self._cached_at: float = 0.0

    @property
    def command(self) -> str:
        return self._command

    async def probe(self) -> Version:
        """Run ``codex --version`` and parse its output (uncached)."""
        result = await self._executor.run(
            self._command, ["--version"], timeout=self._probe_timeout,
        )
        if not result.success:
            logger.error(
                "Failed to get codex CLI version: %s",
                (result.stderr or "no output").strip(),
            )
            return invalid_version("unknown")

        output = result.stdout.strip() or result.stderr.strip()
        version = parse_version(output)
        if version.is_valid:
            logger.info("Detected codex CLI version: %s", version)
        else:
            logger.warning("Could not parse codex version from output: %r", output)
        return version

    async def get_version(self, refresh: bool = False) -> Version:
        """Return the installed version, probing at most once per TTL."""
        now = self._clock()
        if (
            not refresh
            and self._cached is not None
            and now - self._cached_at < self._cache_ttl
        ):
            return self._cached
        version = await self.probe()
        self._cached = version
        self._cached_at = self._clock()
        return version

    def invalidate(self) -> None:
        self._cached = None
        self._cached_at = 0.0

    async def supports(self, gate: CapabilityGate | str) -> bool:
        """Check a feature gate (object or name) against the installed version."""
        if isinstance(gate, str):
            try:
                gate = FEATURE_GATES[gate]
            except KeyError:
                logger.warning("Unknown feature gate %r", gate)
                return False
        version = await self.get_version()
        return meets_min_version(version, gate)

    async def supported_features(self) -> dict[str, bool]:
        """Map every built-in gate name to its availability."""
        version = await self.get_version()
        return {
            name: version.is_valid and compare_versions(version, gate) >= 0
            for name, gate in FEATURE_GATES.items()
        }

    async def supports_resume(self) -> bool:
        return await self.supports(RESUME)

    async def supports_native_search(self) -> bool:
        return await self.supports(NATIVE_SEARCH)

    async def supports_add_dir(self) -> bool:
        return await self.supports(ADD_DIR)

    async def supports_tool_token_limit(self) -> bool:
        return await self.supports(TOOL_TOKEN_LIMIT)
