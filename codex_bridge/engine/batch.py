"""Batch execution of atomic codex tasks.

Tasks run one at a time in priority order (high, normal, low; stable
within a priority). Each task is an ephemeral ask, so a batch never
resumes or overwrites the workspace conversation.

Task files are YAML (JSON is valid YAML too):
    tasks:
      - task: Add type hints
        target: "@src/utils.py"
        priority: high
      - task: Remove unused imports
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .client import CodexClient
from .errors import BatchError
from .executor import ProgressCallback, notify_progress
from .models import BatchTask, BatchTaskResult, BuildOptions, TaskPriority, TaskStatus

logger = logging.getLogger(__name__)

# Per-task output kept in the report.
MAX_TASK_OUTPUT_CHARS = 500
# Output shown per task in the rendered summary.
SUMMARY_OUTPUT_CHARS = 100

SKIPPED_MESSAGE = "Skipped due to previous failure"

_PRIORITY_ORDER = {
    TaskPriority.HIGH: 0,
    TaskPriority.NORMAL: 1,
    TaskPriority.LOW: 2,
}

_STATUS_ICONS = {
    TaskStatus.SUCCESS: "✅",
    TaskStatus.FAILED: "❌",
    TaskStatus.SKIPPED: "⏭️",
}


@dataclass
class BatchReport:
    results: list[BatchTaskResult] = field(default_factory=list)

    def count(self, status: TaskStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return self.count(TaskStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return self.count(TaskStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self.count(TaskStatus.SKIPPED)

    @property
    def all_failed(self) -> bool:
        return self.total > 0 and self.failed == self.total

    def to_markdown(self) -> str:
        lines = [
            "**Batch Execution Summary**",
            "",
            f"- Total tasks: {self.total}",
            f"- Successful: {self.succeeded}",
            f"- Failed: {self.failed}",
            f"- Skipped: {self.skipped}",
            "",
            "**Task Results:**",
            "",
        ]
        for result in self.results:
            lines.append(f"{_STATUS_ICONS[result.status]} **{result.task}**")
            if result.status == TaskStatus.SUCCESS and result.output:
                lines.append(f"   Output: {result.output[:SUMMARY_OUTPUT_CHARS]}...")
            elif result.error:
                lines.append(f"   Error: {result.error}")
        return "\n".join(lines)


def sort_tasks(tasks: list[BatchTask]) -> list[BatchTask]:
    return sorted(tasks, key=lambda t: _PRIORITY_ORDER[TaskPriority(t.priority)])


def parse_task(raw: Any) -> BatchTask:
    """Build a BatchTask from a string or a mapping."""
    if isinstance(raw, str):
        raw = {"task": raw}
    if not isinstance(raw, dict):
        raise BatchError(f"Task entries must be strings or mappings, got {raw!r}")
    task = raw.get("task")
    if not isinstance(task, str) or not task.strip():
        raise BatchError(f"Task entry without a description: {raw!r}")
    unknown = set(raw) - {"task", "target", "priority"}
    if unknown:
        logger.warning("Ignoring unknown task keys: %s", ", ".join(sorted(unknown)))
    priority = raw.get("priority") or TaskPriority.NORMAL.value
    try:
        priority = TaskPriority(priority)
    except ValueError as exc:
        raise BatchError(f"Invalid priority {priority!r} for task {task!r}") from exc
    target = raw.get("target")
    return BatchTask(task=task.strip(), target=str(target) if target else None, priority=priority)


def load_tasks(path: str | Path) -> list[BatchTask]:
    """Read tasks from a YAML file: a list, or a mapping with ``tasks:``."""
    import yaml

    task_path = Path(path).expanduser()
    try:
        text = task_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise BatchError(f"Cannot read task file {task_path}: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise BatchError(f"Task file {task_path} is not valid YAML: {exc}") from exc

    if isinstance(data, dict):
        data = data.get("tasks")
    if not isinstance(data, list):
        raise BatchError(f"Task file {task_path} must hold a list of tasks")
    tasks = [parse_task(entry) for entry in data]
    logger.debug("Loaded %d tasks from %s", len(tasks), task_path)
    return tasks


async def run_batch(
    client: CodexClient,
    tasks: list[BatchTask],
    options: BuildOptions | None = None,
    *,
    stop_on_error: bool = True,
    timeout: float | None = None,
    on_progress: ProgressCallback | None = None,
) -> BatchReport:
    """Run *tasks* sequentially through *client* and report each outcome.

    With *stop_on_error*, every task after the first failure is marked
    skipped instead of being run.

    Raises:
        BatchError: *tasks* is empty.
        OptionConflictError: *options* are contradictory; nothing runs.
    """
    if not tasks:
        raise BatchError("No tasks provided for batch execution")
    options = options if options is not None else BuildOptions()
    client.builder.validate(options)

    ordered = sort_tasks(tasks)
    report = BatchReport()
    await notify_progress(on_progress, f"Starting batch execution of {len(ordered)} tasks...")

    for index, task in enumerate(ordered, start=1):
        prompt = task.prompt
        if stop_on_error and report.failed:
            report.results.append(BatchTaskResult(
                task=prompt, status=TaskStatus.SKIPPED, error=SKIPPED_MESSAGE,
            ))
            continue

        await notify_progress(on_progress, f"[{index}/{len(ordered)}] Executing: {prompt}")
        result = await client.ask(prompt, options, ephemeral=True, timeout=timeout)
        if result.error is None:
            report.results.append(BatchTaskResult(
                task=prompt,
                status=TaskStatus.SUCCESS,
                output=result.text[:MAX_TASK_OUTPUT_CHARS],
            ))
            await notify_progress(on_progress, f"Completed: {task.task}")
        else:
            report.results.append(BatchTaskResult(
                task=prompt, status=TaskStatus.FAILED, error=result.error.message,
            ))
            await notify_progress(
                on_progress, f"Failed: {task.task} - {result.error.message}",
            )

    logger.info(
        "Batch finished: %d ok, %d failed, %d skipped",
        report.succeeded, report.failed, report.skipped,
    )
    return report
