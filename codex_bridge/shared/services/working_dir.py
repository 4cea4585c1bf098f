"""Working directory resolution for codex invocations.

Priority order (highest to lowest):
1. Explicit working directory
2. Environment variables: CODEX_MCP_CWD > PWD > INIT_CWD
3. Inference from ``@path`` references in the prompt, widened to the
   nearest project root
4. The process's current directory
"""
from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path

logger = logging.getLogger(__name__)

CWD_ENV_VARS: tuple[str, ...] = ("CODEX_MCP_CWD", "PWD", "INIT_CWD")

PROJECT_MARKERS: tuple[str, ...] = (
    "package.json",
    ".git",
    "pyproject.toml",
    "Cargo.toml",
    "go.mod",
    "pom.xml",
    "build.gradle",
    "composer.json",
)

MAX_WALK_UP_LEVELS = 10

_QUOTED_AT_PATH_RE = re.compile(r"@[\"']([^\"']+)[\"']")
_ABSOLUTE_AT_PATH_RE = re.compile(r"@(/[^\s\"']+)")
_RELATIVE_AT_PATH_RE = re.compile(
    r"@(\.{1,2}/[^\s\"']+|[A-Za-z0-9_-]+/[^\s\"']+)"
)


def ensure_directory(path: str | None, base_dir: str | None = None) -> str | None:
    """Return *path* as an existing absolute directory.

    Files resolve to their parent directory. Relative paths resolve
    against *base_dir* (default: the current directory). Missing paths
    return None.
    """
    if not path:
        return None
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = Path(base_dir or os.getcwd()) / candidate
    candidate = Path(os.path.normpath(candidate))
    try:
        if candidate.is_dir():
            return str(candidate)
        if candidate.is_file():
            logger.debug("Path is a file, using parent directory: %s", candidate.parent)
            return str(candidate.parent)
    except OSError:
        logger.debug("Cannot stat %s", candidate, exc_info=True)
        return None
    logger.debug("Path does not exist: %s", candidate)
    return None


def find_project_root(start_path: str) -> str:
    """Walk up from *start_path* to the nearest directory with a project marker.

    Falls back to the starting directory when no marker is found within
    MAX_WALK_UP_LEVELS.
    """
    start_dir = ensure_directory(start_path)
    if start_dir is None:
        return start_path
    current = Path(start_dir)
    for _ in range(MAX_WALK_UP_LEVELS):
        for marker in PROJECT_MARKERS:
            if (current / marker).exists():
                logger.debug("Found project root at %s (marker: %s)", current, marker)
                return str(current)
        parent = current.parent
        if parent == current:
            break
        current = parent
    logger.debug("No project markers found, using start directory: %s", start_dir)
    return start_dir


def extract_at_paths(prompt: str, base_dir: str | None = None) -> list[str]:
    """Absolute paths referenced in *prompt* with ``@path`` syntax.

    Handles ``@"quoted path"``, ``@/absolute/path`` and relative forms
    like ``@./src/x.py`` or ``@src/x.py``. Quoted references come first.
    """
    base = base_dir or os.getcwd()
    paths: list[str] = []

    def _absolute(p: str) -> str:
        return p if os.path.isabs(p) else os.path.normpath(os.path.join(base, p))

    for match in _QUOTED_AT_PATH_RE.finditer(prompt):
        paths.append(_absolute(match.group(1)))
    for match in _ABSOLUTE_AT_PATH_RE.finditer(prompt):
        paths.append(match.group(1))
    for match in _RELATIVE_AT_PATH_RE.finditer(prompt):
        paths.append(_absolute(match.group(1)))
    return paths


class WorkingDirResolver:
    """Resolves the directory a codex invocation should run in."""

    def __init__(
        self,
        env: Mapping[str, str] | None = None,
        env_vars: tuple[str, ...] = CWD_ENV_VARS,
    ) -> None:
        # None means read os.environ at resolve time.
        self._env = env
        self._env_vars = env_vars

    def _environ(self) -> Mapping[str, str]:
        return self._env if self._env is not None else os.environ

    def resolve(
        self,
        working_dir: str | None = None,
        prompt: str | None = None,
    ) -> str:
        env = self._environ()
        base_dir = next(
            (env[name] for name in self._env_vars if env.get(name)),
            os.getcwd(),
        )

        if working_dir:
            valid = ensure_directory(working_dir, base_dir)
            if valid:
                logger.debug("Using explicit working directory: %s", valid)
                return valid
            logger.warning("Explicit working directory is invalid: %s", working_dir)

        for name in self._env_vars:
            value = env.get(name)
            if not value:
                continue
            valid = ensure_directory(value)
            if valid:
                logger.debug("Using environment variable %s: %s", name, valid)
                return valid
            logger.debug("Environment variable %s is invalid: %s", name, value)

        if prompt:
            for path in extract_at_paths(prompt, base_dir):
                if os.path.exists(path):
                    root = find_project_root(path)
                    logger.debug("Inferred working directory from @path: %s", root)
                    return root

        cwd = os.getcwd()
        logger.debug("Using process cwd as working directory: %s", cwd)
        return cwd


def resolve_working_directory(
    working_dir: str | None = None,
    prompt: str | None = None,
) -> str:
    """Module-level convenience around a default WorkingDirResolver."""
    return WorkingDirResolver().resolve(working_dir=working_dir, prompt=prompt)
