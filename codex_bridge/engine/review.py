"""Code review of the current changes through codex's ``/review`` command."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .client import AskResult, CodexClient
from .executor import ProgressCallback, notify_progress
from .models import BuildOptions

logger = logging.getLogger(__name__)

REVIEW_COMMAND = "/review"
DEFAULT_REVIEW_TIMEOUT_SECONDS = 180.0

_JSON_FENCE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


def review_prompt(prompt: str | None = None) -> str:
    """``/review`` plus optional context; slash commands pass through unchanged."""
    text = (prompt or "").strip()
    if text.startswith("/"):
        return text
    return f"{REVIEW_COMMAND} {text}".strip()


@dataclass
class ReviewFinding:
    title: str
    body: str = ""
    # 0 is most urgent.
    priority: int | None = None
    file: str | None = None
    line: int | None = None

    @property
    def high_priority(self) -> bool:
        return self.priority in (0, 1)


@dataclass
class ReviewOutput:
    findings: list[ReviewFinding] = field(default_factory=list)
    overall_correctness: str | None = None
    overall_explanation: str | None = None


@dataclass
class ReviewResult:
    ask: AskResult
    structured: ReviewOutput | None = None

    @property
    def ok(self) -> bool:
        return self.ask.ok

    def to_markdown(self) -> str:
        if self.structured is None:
            return f"## Codex Review Results\n\n{self.ask.text}"
        return format_review(self.structured)


def _finding_from_dict(raw: dict[str, Any]) -> ReviewFinding:
    location = raw.get("code_location") or {}
    line_range = location.get("line_range") or {}
    priority = raw.get("priority")
    return ReviewFinding(
        title=str(raw.get("title") or "Untitled finding"),
        body=str(raw.get("body") or ""),
        priority=priority if isinstance(priority, int) else None,
        file=location.get("absolute_file_path"),
        line=line_range.get("start"),
    )


def parse_review_output(text: str) -> ReviewOutput | None:
    """Parse codex's JSON review payload, bare or in a ```json fence.

    Returns None when the output is plain prose.
    """
    candidates = [text.strip()]
    candidates.extend(m.group(1) for m in _JSON_FENCE.finditer(text))
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if not isinstance(data, dict) or not isinstance(data.get("findings"), list):
            continue
        return ReviewOutput(
            findings=[_finding_from_dict(f) for f in data["findings"] if isinstance(f, dict)],
            overall_correctness=data.get("overall_correctness"),
            overall_explanation=data.get("overall_explanation"),
        )
    return None


def format_review(review: ReviewOutput) -> str:
    lines = ["## Codex Review Results", ""]
    if review.overall_correctness:
        lines.append(f"**Verdict:** {review.overall_correctness}")
    if review.overall_explanation:
        lines.extend([review.overall_explanation, ""])
    for finding in review.findings:
        tag = f"[P{finding.priority}] " if finding.priority is not None else ""
        lines.append(f"### {tag}{finding.title}")
        if finding.file:
            where = finding.file if finding.line is None else f"{finding.file}:{finding.line}"
            lines.append(f"`{where}`")
        if finding.body:
            lines.append(finding.body)
        lines.append("")
    high = sum(1 for f in review.findings if f.high_priority)
    lines.extend([
        "**Review Statistics:**",
        f"- Issues found: {len(review.findings)}",
        f"- High priority issues: {high}",
    ])
    return "\n".join(lines)


async def run_review(
    client: CodexClient,
    prompt: str | None = None,
    *,
    model: str | None = None,
    working_dir: str | None = None,
    timeout: float | None = None,
    on_progress: ProgressCallback | None = None,
) -> ReviewResult:
    """Run ``codex exec /review`` over the working tree's changes.

    The review is ephemeral: it never resumes the workspace conversation.
    """
    command = review_prompt(prompt)
    await notify_progress(on_progress, f"Launching codex review: {command}")
    options = BuildOptions(model=model, working_dir=working_dir, file_prompt_transport=False)
    result = await client.ask(
        command,
        options,
        ephemeral=True,
        timeout=timeout if timeout is not None else DEFAULT_REVIEW_TIMEOUT_SECONDS,
    )
    if not result.ok:
        logger.error("Review failed: %s", result.error.message)
        return ReviewResult(ask=result)

    structured = parse_review_output(result.text)
    if structured is not None:
        logger.debug("Parsed %d review findings", len(structured.findings))
    return ReviewResult(ask=result, structured=structured)
