"""Core data models for the Codex bridge.

All dataclasses, enums, and type aliases. Single source of truth
to avoid circular imports.
"""
from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Union


class SandboxMode(str, Enum):
    """Values accepted by `codex --sandbox`."""
    READ_ONLY = "read-only"
    WORKSPACE_WRITE = "workspace-write"
    DANGER_FULL_ACCESS = "danger-full-access"


class ApprovalPolicy(str, Enum):
    """Values accepted by `codex --ask-for-approval`."""
    UNTRUSTED = "untrusted"
    ON_FAILURE = "on-failure"
    ON_REQUEST = "on-request"
    NEVER = "never"


class ReasoningEffort(str, Enum):
    """Reasoning depth levels accepted by the codex models."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    XHIGH = "xhigh"


class LocalProvider(str, Enum):
    """Local model servers selectable with `--local-provider`."""
    LMSTUDIO = "lmstudio"
    OLLAMA = "ollama"


class ErrorCategory(str, Enum):
    """Fixed failure categories. See error_classifier.py for the rules."""
    CLI_NOT_FOUND = "CLI_NOT_FOUND"
    AUTHENTICATION = "AUTHENTICATION"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    SANDBOX = "SANDBOX"
    NETWORK = "NETWORK"
    SESSION = "SESSION"
    UNKNOWN = "UNKNOWN"


class TaskPriority(str, Enum):
    """Batch task priority; higher priorities run first."""
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class TaskStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class BrainstormMethodology(str, Enum):
    """Ideation frameworks for brainstorm prompts."""
    DIVERGENT = "divergent"
    CONVERGENT = "convergent"
    SCAMPER = "scamper"
    DESIGN_THINKING = "design-thinking"
    LATERAL = "lateral"
    AUTO = "auto"


@dataclass(frozen=True, order=True)
class Version:
    """A parsed codex CLI version.

    Equality and ordering only look at (major, minor, patch).
    """
    major: int = 0
    minor: int = 0
    patch: int = 0
    raw: str = field(default="", compare=False)
    is_valid: bool = field(default=False, compare=False)

    @property
    def triple(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def __str__(self) -> str:
        if not self.is_valid:
            return self.raw or "unknown"
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class CapabilityGate:
    """A named CLI feature and the first version that ships it."""
    name: str
    major: int
    minor: int
    patch: int

    @property
    def threshold(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def __str__(self) -> str:
        return f"{self.name} (>= {self.major}.{self.minor}.{self.patch})"


class ConfigOverrides:
    """Ordered ``key=value`` overrides passed through ``codex -c``.

    Insertion order is preserved; setting an existing key keeps its
    original position. Serializes to ``k1=v1,k2=v2``.
    """

    SEPARATOR = ","

    def __init__(
        self,
        items: Iterable[tuple[str, object]] | dict[str, object] | None = None,
    ) -> None:
        self._items: dict[str, str] = {}
        if items is None:
            return
        pairs = items.items() if isinstance(items, dict) else items
        for key, value in pairs:
            self.set(key, value)

    def set(self, key: str, value: object) -> None:
        key = str(key).strip()
        if not key:
            raise ValueError("Config override key must not be empty")
        self._items[key] = _format_override_value(value)

    def get(self, key: str) -> str | None:
        return self._items.get(key)

    def items(self) -> list[tuple[str, str]]:
        return list(self._items.items())

    def serialize(self) -> str:
        return self.SEPARATOR.join(f"{k}={v}" for k, v in self._items.items())

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConfigOverrides):
            return NotImplemented
        return self.items() == other.items()

    def __repr__(self) -> str:
        return f"ConfigOverrides({self.serialize()!r})"


def _format_override_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# A raw "-c" string is passed through verbatim.
ConfigInput = Union[str, ConfigOverrides, dict]


@dataclass
class BuildOptions:
    """Option bag accepted by CommandBuilder.build()."""
    model: str | None = None
    full_auto: bool = False
    approval_policy: ApprovalPolicy | str | None = None
    sandbox_mode: SandboxMode | str | None = None
    yolo: bool = False
    cd: str | None = None
    working_dir: str | None = None
    config: ConfigInput | None = None
    profile: str | None = None
    images: list[str] = field(default_factory=list)
    search: bool = False
    oss: bool = False
    local_provider: LocalProvider | str | None = None
    enable_features: list[str] = field(default_factory=list)
    disable_features: list[str] = field(default_factory=list)
    add_dirs: list[str] = field(default_factory=list)
    tool_output_token_limit: int | None = None
    reasoning_effort: ReasoningEffort | str | None = None
    # Codex-issued conversation id; enables `exec resume` when supported.
    conversation_id: str | None = None
    change_mode: bool = False
    concise_prompt: bool = False
    file_prompt_transport: bool = True

    @property
    def uses_local_provider(self) -> bool:
        return bool(self.oss or self.local_provider)


@dataclass
class BuildResult:
    """Output of a single CommandBuilder.build() call."""
    args: list[str]
    final_prompt: str
    temp_file: str | None = None
    use_resume: bool = False


@dataclass
class Session:
    """Conversation state for one logical session."""
    session_id: str
    workspace_id: str
    created_at: float
    updated_at: float
    conversation_id: str | None = None
    last_prompt: str = ""
    last_response: str = ""
    model: str | None = None
    working_dir: str | None = None


@dataclass
class ExecutionResult:
    """Observable outcome of one external process run."""
    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    timed_out: bool = False
    partial_stdout: str = ""


@dataclass
class BatchTask:
    """One atomic unit of work in a batch run."""
    task: str
    target: str | None = None
    priority: TaskPriority = TaskPriority.NORMAL

    @property
    def prompt(self) -> str:
        if self.target:
            return f"{self.task} in {self.target}"
        return self.task


@dataclass
class BatchTaskResult:
    task: str
    status: TaskStatus
    output: str = ""
    error: str | None = None


def enum_value(value: Enum | str | None) -> str | None:
    """Return the plain string for an enum member or string."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)
