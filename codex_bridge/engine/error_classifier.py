"""Classification of codex failures into actionable categories.

Raw stderr from the CLI is matched against an ordered rule list; the
first rule that fires decides the category. Each category carries a
fixed title, remediation steps, and retry policy.
"""
from __future__ import annotations

import json
import logging
import random
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .models import ErrorCategory

logger = logging.getLogger(__name__)

MAX_RETRY_DELAY_SECONDS = 300.0
_MAX_JITTER_SECONDS = 1.0

Predicate = Callable[[str], bool]


def keyword_rule(*keywords: str) -> Predicate:
    """Predicate that fires when any keyword occurs in the lowercased text."""
    def _matches(message: str) -> bool:
        return any(kw in message for kw in keywords)
    _matches.keywords = keywords  # type: ignore[attr-defined]
    return _matches


# Order matters: "not found" must win over "session not found".
CLASSIFICATION_RULES: list[tuple[Predicate, ErrorCategory]] = [
    (keyword_rule("command not found", "not found", "enoent"),
     ErrorCategory.CLI_NOT_FOUND),
    (keyword_rule("authentication", "unauthorized", "api key", "401"),
     ErrorCategory.AUTHENTICATION),
    (keyword_rule("rate limit", "quota", "too many requests", "429"),
     ErrorCategory.RATE_LIMIT),
    (keyword_rule("timeout", "timed out", "etimedout"),
     ErrorCategory.TIMEOUT),
    (keyword_rule("sandbox", "permission", "denied", "access"),
     ErrorCategory.SANDBOX),
    (keyword_rule("network", "connect", "econnrefused", "enotfound"),
     ErrorCategory.NETWORK),
    (keyword_rule("session", "expired", "conversation id"),
     ErrorCategory.SESSION),
]


@dataclass(frozen=True)
class CategoryInfo:
    title: str
    description: str
    solutions: tuple[str, ...]
    retryable: bool = False
    base_delay_seconds: float = 0.0


CATEGORY_INFO: dict[ErrorCategory, CategoryInfo] = {
    ErrorCategory.CLI_NOT_FOUND: CategoryInfo(
        title="Codex CLI Not Found",
        description="Codex CLI is not installed or not in PATH.",
        solutions=(
            "Install Codex CLI: `npm install -g @openai/codex`",
            "Verify installation: `codex --version`",
            "Check PATH environment variable",
        ),
    ),
    ErrorCategory.AUTHENTICATION: CategoryInfo(
        title="Authentication Failed",
        description="API key is invalid or authentication is required.",
        solutions=(
            "Run `codex login` to authenticate",
            "Set `OPENAI_API_KEY` environment variable",
            "Verify API key has Codex access in OpenAI dashboard",
        ),
    ),
    ErrorCategory.RATE_LIMIT: CategoryInfo(
        title="Rate Limit Exceeded",
        description="Too many requests. Please wait and try again.",
        solutions=(
            "Wait a few minutes before retrying",
            "Check usage quotas in OpenAI dashboard",
            "Consider using a less powerful model",
        ),
        retryable=True,
        base_delay_seconds=60.0,
    ),
    ErrorCategory.TIMEOUT: CategoryInfo(
        title="Request Timeout",
        description="Operation took longer than expected.",
        solutions=(
            "Increase timeout: `--timeout 300`",
            "Simplify request or break into smaller parts",
            "Check network connectivity",
        ),
        retryable=True,
        base_delay_seconds=5.0,
    ),
    ErrorCategory.SANDBOX: CategoryInfo(
        title="Sandbox Permission Error",
        description="Operation blocked by sandbox restrictions.",
        solutions=(
            "Use `--sandbox workspace-write` for file operations",
            "Use `--approval-policy on-request` for interactive approval",
            "Use `--full-auto` for automated operations",
        ),
    ),
    ErrorCategory.NETWORK: CategoryInfo(
        title="Network Error",
        description="Failed to connect to API server.",
        solutions=(
            "Check internet connection",
            "Verify firewall/proxy settings",
            "Try again later - API may be experiencing issues",
        ),
        retryable=True,
        base_delay_seconds=10.0,
    ),
    ErrorCategory.SESSION: CategoryInfo(
        title="Session Error",
        description="Session is invalid, expired, or not found.",
        solutions=(
            "Session may have expired (default TTL: 24 hours)",
            "Use `codex-bridge sessions` to check active sessions",
            "Create new session by omitting `--session`",
            "Use `--reset-session` to start fresh",
        ),
    ),
    ErrorCategory.UNKNOWN: CategoryInfo(
        title="Unknown Error",
        description="An unexpected error occurred.",
        solutions=(
            "Check Codex CLI: `codex --version`",
            "Run `codex login` to verify authentication",
            "Try simpler query to isolate the issue",
            "Run `codex-bridge health` to diagnose",
        ),
        base_delay_seconds=5.0,
    ),
}


def classify(message: str) -> ErrorCategory:
    """Map raw failure text to an ErrorCategory (first matching rule wins)."""
    text = (message or "").lower()
    for predicate, category in CLASSIFICATION_RULES:
        if predicate(text):
            return category
    return ErrorCategory.UNKNOWN


class CodexError(Exception):
    """A classified codex failure with remediation guidance."""

    def __init__(
        self,
        category: ErrorCategory,
        message: str | None = None,
        cause: BaseException | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        self.category = category
        self.message = message or CATEGORY_INFO[category].description
        self.cause = cause
        self.context = dict(context) if context else None
        super().__init__(self.message)

    @property
    def info(self) -> CategoryInfo:
        return CATEGORY_INFO[self.category]

    @property
    def title(self) -> str:
        return self.info.title

    @property
    def description(self) -> str:
        return self.info.description

    @property
    def solutions(self) -> list[str]:
        return list(self.info.solutions)

    @property
    def retryable(self) -> bool:
        return self.info.retryable

    def to_user_string(self) -> str:
        lines = [f"**{self.title}**: {self.message}", "", "**Solutions:**"]
        lines.extend(f"- {s}" for s in self.solutions)
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "category": self.category.value,
            "title": self.title,
            "description": self.description,
            "message": self.message,
            "solutions": self.solutions,
            "retryable": self.retryable,
        }
        if self.context:
            data["context"] = json.loads(json.dumps(self.context, default=str))
        return data


def create_error(
    error: BaseException | str,
    context: Mapping[str, Any] | None = None,
) -> CodexError:
    """Wrap an exception or raw message in a classified CodexError."""
    if isinstance(error, CodexError):
        return error
    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
        cause: BaseException | None = error
    else:
        message = error
        cause = None
    category = classify(message)
    logger.debug("Classified failure as %s: %s", category.value, message[:200])
    return CodexError(category, message, cause=cause, context=context)


def format_error_for_user(error: BaseException | str) -> str:
    return create_error(error).to_user_string()


def is_retryable(error: CodexError | ErrorCategory) -> bool:
    category = error.category if isinstance(error, CodexError) else error
    return CATEGORY_INFO[category].retryable


def retry_delay(
    error: CodexError | ErrorCategory,
    attempt: int = 1,
    *,
    rng: random.Random | None = None,
) -> float:
    """Seconds to wait before retry *attempt* (1-based).

    Exponential backoff from the category base delay plus up to one
    second of jitter, capped at five minutes.
    """
    category = error.category if isinstance(error, CodexError) else error
    base = CATEGORY_INFO[category].base_delay_seconds
    delay = base * (2 ** (max(attempt, 1) - 1))
    jitter = (rng or random).uniform(0.0, _MAX_JITTER_SECONDS)
    return min(delay + jitter, MAX_RETRY_DELAY_SECONDS)
