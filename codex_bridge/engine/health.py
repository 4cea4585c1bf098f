"""Installation and session diagnostics."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from .session_store import SessionStore
from .version_probe import VersionProbe

logger = logging.getLogger(__name__)

# Session table usage above this fraction is reported as an issue.
CAPACITY_WARNING_RATIO = 0.9

STATUS_HEALTHY = "healthy"
STATUS_DEGRADED = "degraded"
STATUS_UNHEALTHY = "unhealthy"


@dataclass
class HealthStatus:
    status: str
    installed: bool
    version: str
    command: str
    features: dict[str, bool] = field(default_factory=dict)
    sessions: dict[str, Any] = field(default_factory=dict)
    session: dict[str, Any] | None = None
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


async def check_health(
    version_probe: VersionProbe,
    session_store: SessionStore,
    session_id: str | None = None,
    *,
    refresh: bool = True,
) -> HealthStatus:
    """Probe the codex CLI and summarize session state.

    ``unhealthy`` means codex cannot be run at all; ``degraded`` means
    it runs but something needs attention.
    """
    version = await version_probe.get_version(refresh=refresh)
    installed = version.is_valid
    issues: list[str] = []

    if installed:
        features = await version_probe.supported_features()
        missing = sorted(name for name, ok in features.items() if not ok)
        if missing:
            issues.append(
                f"codex {version} lacks: {', '.join(missing)}; upgrade with "
                "`npm install -g @openai/codex@latest`"
            )
    else:
        features = {}
        issues.append(
            f"codex CLI not found or unusable ({version_probe.command!r}); "
            "install with `npm install -g @openai/codex`"
        )

    stats = session_store.stats()
    if stats["total"] > stats["max_sessions"] * CAPACITY_WARNING_RATIO:
        issues.append(
            f"Session storage near capacity ({stats['total']}/{stats['max_sessions']})"
        )

    session_info: dict[str, Any] | None = None
    if session_id:
        session = session_store.get(session_id)
        if session is None:
            issues.append(f"Session {session_id} not found or expired")
            session_info = {"session_id": session_id, "exists": False}
        else:
            session_info = {
                "session_id": session.session_id,
                "exists": True,
                "workspace_id": session.workspace_id,
                "conversation_id": session.conversation_id,
                "model": session.model,
                "working_dir": session.working_dir,
            }

    if not installed:
        status = STATUS_UNHEALTHY
    elif issues:
        status = STATUS_DEGRADED
    else:
        status = STATUS_HEALTHY

    logger.debug("Health check: status=%s issues=%d", status, len(issues))
    return HealthStatus(
        status=status,
        installed=installed,
        version=str(version),
        command=version_probe.command,
        features=features,
        sessions=stats,
        session=session_info,
        issues=issues,
    )
