"""Repository metadata for workspace identification.

Locates the git repository enclosing a working directory and reads its
HEAD reference straight from disk, without spawning git. Linked
worktrees (where ``.git`` is a file pointing at the real git dir) are
followed. Every lookup tolerates a missing or unreadable repository.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_GIT_ROOT_DEPTH = 20
WORKSPACE_ID_LENGTH = 12


@dataclass
class RepositoryContext:
    """What the workspace hash is derived from."""
    repo_name: str
    head: str
    working_dir: str
    git_root: Path | None = None

    @property
    def is_git_repo(self) -> bool:
        return self.git_root is not None


class ProjectManager:
    """Maps working directories to repository identity."""

    @staticmethod
    def find_git_root(start: str | Path) -> Path | None:
        """Walk up from *start* to the nearest directory holding ``.git``."""
        current = Path(start)
        for _ in range(MAX_GIT_ROOT_DEPTH):
            if (current / ".git").exists():
                return current
            parent = current.parent
            if parent == current:
                break
            current = parent
        return None

    @staticmethod
    def get_git_dir(git_root: Path) -> Path | None:
        """Resolve the git directory, following ``gitdir:`` pointer files."""
        dot_git = git_root / ".git"
        if dot_git.is_dir():
            return dot_git
        if dot_git.is_file():
            try:
                content = dot_git.read_text(encoding="utf-8").strip()
            except OSError:
                logger.debug("Failed to read %s", dot_git, exc_info=True)
                return None
            if content.startswith("gitdir:"):
                target = Path(content[len("gitdir:"):].strip())
                if not target.is_absolute():
                    target = git_root / target
                return target
        return None

    @staticmethod
    def read_git_head(git_root: Path | None) -> str:
        """Return the HEAD file contents, or "" when unavailable."""
        if git_root is None:
            return ""
        git_dir = ProjectManager.get_git_dir(git_root)
        if git_dir is None:
            return ""
        head_path = git_dir / "HEAD"
        try:
            return head_path.read_text(encoding="utf-8").strip()
        except OSError:
            logger.debug("Failed to read git HEAD at %s", head_path)
            return ""

    @staticmethod
    def get_repository_context(working_dir: str) -> RepositoryContext:
        git_root = ProjectManager.find_git_root(working_dir)
        repo_name = (git_root or Path(working_dir)).name
        return RepositoryContext(
            repo_name=repo_name,
            head=ProjectManager.read_git_head(git_root),
            working_dir=working_dir,
            git_root=git_root,
        )


def workspace_id_from_parts(repo_name: str, head: str, working_dir: str) -> str:
    """Deterministic 12-hex-char hash of ``repo:head:path``."""
    digest = hashlib.md5(
        f"{repo_name}:{head}:{working_dir}".encode("utf-8")
    ).hexdigest()
    return digest[:WORKSPACE_ID_LENGTH]


def generate_workspace_id(working_dir: str) -> str:
    """Workspace id for *working_dir* (changes whenever HEAD changes)."""
    ctx = ProjectManager.get_repository_context(working_dir)
    return workspace_id_from_parts(ctx.repo_name, ctx.head, ctx.working_dir)
