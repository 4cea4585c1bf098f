"""Exception hierarchy for the Codex bridge.

Construction-time failures raise immediately. Failures of the codex
process itself are classified into CodexError (see error_classifier.py).
"""
from __future__ import annotations


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class OptionConflictError(BridgeError, ValueError):
    """Two mutually exclusive invocation options were requested."""
    def __init__(self, first: str, second: str):
        self.first = first
        self.second = second
        super().__init__(f"Cannot use both {first} and {second}")


class ConfigError(BridgeError):
    """Configuration file is missing, unreadable, or malformed."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid configuration {path}: {reason}")


class BatchError(BridgeError):
    """A batch could not be started (no tasks, or an unreadable task file)."""
