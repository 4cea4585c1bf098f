"""Codex bridge: capability-aware invocation of the OpenAI Codex CLI."""
from .models import (
    ApprovalPolicy,
    BatchTask,
    BatchTaskResult,
    BrainstormMethodology,
    BuildOptions,
    BuildResult,
    CapabilityGate,
    ConfigOverrides,
    ErrorCategory,
    ExecutionResult,
    LocalProvider,
    ReasoningEffort,
    SandboxMode,
    Session,
    TaskPriority,
    TaskStatus,
    Version,
)
from .config import BridgeConfig
from .errors import BatchError, BridgeError, ConfigError, OptionConflictError
from .error_classifier import CodexError, classify, create_error, retry_delay
from .executor import ProcessExecutor
from .version_probe import FEATURE_GATES, VersionProbe, parse_version
from .model_availability import ModelAvailabilityResolver, ModelCache
from .session_store import SessionStore, parse_conversation_id
from .command_builder import CommandBuilder
from .client import AskResult, CodexClient
from .health import HealthStatus, check_health
from .batch import BatchReport, load_tasks, run_batch
from .review import ReviewResult, run_review
from .brainstorm import BrainstormRequest, build_brainstorm_prompt, run_brainstorm

__all__ = [
    # Models
    "ApprovalPolicy",
    "BatchTask",
    "BatchTaskResult",
    "BrainstormMethodology",
    "BuildOptions",
    "BuildResult",
    "CapabilityGate",
    "ConfigOverrides",
    "ErrorCategory",
    "ExecutionResult",
    "LocalProvider",
    "ReasoningEffort",
    "SandboxMode",
    "Session",
    "TaskPriority",
    "TaskStatus",
    "Version",
    # Config
    "BridgeConfig",
    "load_yaml_config",
    # Errors
    "BatchError",
    "BridgeError",
    "ConfigError",
    "OptionConflictError",
    "CodexError",
    "classify",
    "create_error",
    "retry_delay",
    # Components
    "ProcessExecutor",
    "FEATURE_GATES",
    "VersionProbe",
    "parse_version",
    "ModelAvailabilityResolver",
    "ModelCache",
    "SessionStore",
    "parse_conversation_id",
    "CommandBuilder",
    "CodexClient",
    "AskResult",
    "HealthStatus",
    "check_health",
    # Tools
    "BatchReport",
    "load_tasks",
    "run_batch",
    "ReviewResult",
    "run_review",
    "BrainstormRequest",
    "build_brainstorm_prompt",
    "run_brainstorm",
]


def __getattr__(name: str):
    """Lazy import for the YAML loader (keeps PyYAML off the import path)."""
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
