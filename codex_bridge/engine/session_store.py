"""In-memory, workspace-isolated session storage.

Sessions map a caller-visible session id to the codex conversation id
needed for ``codex exec resume``. Entries expire after a TTL and the
table is capped; both limits are enforced on every mutating call
rather than by a background timer. Nothing is persisted across
process restarts.
"""
from __future__ import annotations

import logging
import random
import re
import string
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, replace
from typing import Any

from ..shared.services.project import generate_workspace_id
from .models import Session

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_SECONDS = 24 * 60 * 60
DEFAULT_MAX_SESSIONS = 50
MAX_STORED_RESPONSE_CHARS = 1000

# Wording differs between codex releases; first match wins.
_CONVERSATION_ID_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"conversation\s*id\s*:\s*([a-zA-Z0-9-]+)", re.IGNORECASE),
    re.compile(r"conv(?:ersation)?[-_]?id\s*[=:]\s*([a-zA-Z0-9-]+)", re.IGNORECASE),
    re.compile(r"session\s*id\s*:\s*([a-zA-Z0-9-]+)", re.IGNORECASE),
)

_BASE36 = string.digits + string.ascii_lowercase

_UPDATABLE_FIELDS = (
    "workspace_id",
    "conversation_id",
    "last_prompt",
    "last_response",
    "model",
    "working_dir",
)


def parse_conversation_id(output: str) -> str | None:
    """Extract the codex conversation id from CLI output, if present."""
    if not output:
        return None
    for pattern in _CONVERSATION_ID_PATTERNS:
        match = pattern.search(output)
        if match and match.group(1):
            return match.group(1)
    return None


def _to_base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_session_id() -> str:
    """``ses_<base36 ms timestamp>_<6 random chars>``."""
    stamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(random.choices(_BASE36, k=6))
    return f"ses_{stamp}_{suffix}"


class SessionStore:
    """TTL- and capacity-bounded session table.

    Thread-safe: every read-modify-write runs under a single lock.
    Records handed out are copies; mutate through save().
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        *,
        clock: Callable[[], float] = time.time,
        workspace_id: Callable[[str], str] = generate_workspace_id,
        id_factory: Callable[[], str] = generate_session_id,
    ) -> None:
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self._ttl = ttl_seconds
        self._max_sessions = max_sessions
        self._clock = clock
        self._workspace_id = workspace_id
        self._id_factory = id_factory
        self._sessions: dict[str, Session] = {}
        self._lock = threading.RLock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def max_sessions(self) -> int:
        return self._max_sessions

    # ── eviction ──────────────────────────────────────────────

    def _is_expired(self, session: Session, now: float) -> bool:
        return now - session.updated_at > self._ttl

    def _evict(self) -> None:
        """Purge expired sessions, then the oldest ones over capacity."""
        now = self._clock()
        expired = [
            sid for sid, s in self._sessions.items() if self._is_expired(s, now)
        ]
        for sid in expired:
            del self._sessions[sid]
            logger.debug("Cleaned up expired session: %s", sid)

        overflow = len(self._sessions) - self._max_sessions
        if overflow > 0:
            # sorted() is stable, so ties keep insertion order.
            oldest = sorted(
                self._sessions.values(), key=lambda s: s.updated_at,
            )[:overflow]
            for session in oldest:
                del self._sessions[session.session_id]
                logger.debug(
                    "Cleaned up oldest session (over limit): %s",
                    session.session_id,
                )

    # ── reads ─────────────────────────────────────────────────

    def get(self, session_id: str) -> Session | None:
        """Return the session, or None if missing or expired."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if self._is_expired(session, self._clock()):
                del self._sessions[session_id]
                logger.debug("Session expired: %s", session_id)
                return None
            return replace(session)

    def get_by_workspace(self, workspace_id: str) -> Session | None:
        """Most recently updated live session for a workspace."""
        with self._lock:
            self._evict()
            matches = [
                s for s in self._sessions.values() if s.workspace_id == workspace_id
            ]
            if not matches:
                return None
            return replace(max(matches, key=lambda s: s.updated_at))

    def list_sessions(self) -> list[Session]:
        """All live sessions, newest first."""
        with self._lock:
            self._evict()
            return [
                replace(s)
                for s in sorted(
                    self._sessions.values(),
                    key=lambda s: s.updated_at,
                    reverse=True,
                )
            ]

    def get_conversation_id(self, session_id: str) -> str | None:
        session = self.get(session_id)
        return session.conversation_id if session else None

    def stats(self) -> dict[str, Any]:
        with self._lock:
            self._evict()
            return {
                "total": len(self._sessions),
                "with_conversation_id": sum(
                    1 for s in self._sessions.values() if s.conversation_id
                ),
                "max_sessions": self._max_sessions,
                "ttl_seconds": self._ttl,
            }

    # ── writes ────────────────────────────────────────────────

    def save(self, session_id: str, **changes: Any) -> Session:
        """Merge *changes* into a session, creating it if needed.

        Empty values never overwrite stored ones. ``updated_at`` is
        always refreshed.
        """
        unknown = set(changes) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise TypeError(f"Unknown session fields: {', '.join(sorted(unknown))}")

        with self._lock:
            self._evict()
            now = self._clock()
            existing = self._sessions.pop(session_id, None)
            if existing is None:
                session = Session(
                    session_id=session_id,
                    workspace_id="",
                    created_at=now,
                    updated_at=now,
                )
            else:
                session = existing

            for name, value in changes.items():
                if value is None or value == "":
                    continue
                if name == "last_response":
                    value = str(value)[:MAX_STORED_RESPONSE_CHARS]
                setattr(session, name, value)
            session.updated_at = now

            # Re-inserting moves the record to the end of insertion order.
            self._sessions[session_id] = session
            self._evict()
            logger.debug(
                "Saved session: %s (workspace: %s)",
                session_id, session.workspace_id,
            )
            return replace(session)

    def get_or_create(
        self,
        working_dir: str,
        session_id: str | None = None,
    ) -> Session:
        """Resolve the session for a request.

        An explicit *session_id* is authoritative: its live record is
        returned as-is, or a new record with exactly that id is created.
        Without one, the newest session of the working directory's
        workspace is reused, or a fresh generated-id session created.
        """
        workspace_id = self._workspace_id(working_dir)
        with self._lock:
            if session_id:
                existing = self.get(session_id)
                if existing is not None:
                    return existing
                return self.save(
                    session_id,
                    workspace_id=workspace_id,
                    working_dir=working_dir,
                )

            workspace_session = self.get_by_workspace(workspace_id)
            if workspace_session is not None:
                return workspace_session

            return self.save(
                self._id_factory(),
                workspace_id=workspace_id,
                working_dir=working_dir,
            )

    def set_conversation_id(self, session_id: str, conversation_id: str) -> bool:
        """Attach a codex conversation id to a live session."""
        with self._lock:
            if self.get(session_id) is None:
                return False
            self.save(session_id, conversation_id=conversation_id)
            logger.debug(
                "Set codex conversation id for session %s: %s",
                session_id, conversation_id,
            )
            return True

    def delete(self, session_id: str) -> bool:
        with self._lock:
            deleted = self._sessions.pop(session_id, None) is not None
            if deleted:
                logger.debug("Deleted session: %s", session_id)
            return deleted

    def clear(self) -> None:
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
            logger.debug("Cleared all %d sessions", count)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __bool__(self) -> bool:
        # A store is a collaborator, not a container; empty is still truthy.
        return True


def session_to_dict(session: Session) -> dict[str, Any]:
    return asdict(session)
