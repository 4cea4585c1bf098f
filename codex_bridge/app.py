"""codex-bridge command line entry point.

Usage:
    codex-bridge ask "Explain @src/main.py"
    codex-bridge ask --model gpt-5.2-codex --full-auto "Add tests for @src/x.py"
    codex-bridge ask --search --session ses_abc "What changed upstream?"
    codex-bridge batch tasks.yaml --sandbox workspace-write
    codex-bridge review "focus on error handling"
    codex-bridge brainstorm --methodology scamper "Faster CI"
    codex-bridge health --verbose
    codex-bridge sessions
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from codex_bridge.engine.batch import BatchReport, load_tasks, run_batch
from codex_bridge.engine.brainstorm import DEFAULT_IDEA_COUNT, BrainstormRequest, run_brainstorm
from codex_bridge.engine.client import AskResult, CodexClient
from codex_bridge.engine.config import BridgeConfig
from codex_bridge.engine.errors import BridgeError
from codex_bridge.engine.health import STATUS_HEALTHY, HealthStatus, check_health
from codex_bridge.engine.models import (
    ApprovalPolicy,
    BrainstormMethodology,
    BuildOptions,
    ConfigOverrides,
    LocalProvider,
    ReasoningEffort,
    SandboxMode,
)
from codex_bridge.engine.review import ReviewResult, run_review
from codex_bridge.engine.yaml_config import load_yaml_config

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def _add_invocation_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--model", "-m", help="Model name (default: first available)")
    p.add_argument("--full-auto", action="store_true", help="Run codex in full-auto mode")
    p.add_argument(
        "--approval-policy", choices=[v.value for v in ApprovalPolicy],
        help="When codex asks for approval",
    )
    p.add_argument(
        "--sandbox", choices=[s.value for s in SandboxMode],
        help="Sandbox mode for model-generated commands",
    )
    p.add_argument(
        "--yolo", action="store_true",
        help="Bypass approvals and sandbox (dangerous)",
    )
    p.add_argument("--cd", help="Working directory (sent as --cd)")
    p.add_argument("--working-dir", help="Working directory (sent as -C)")
    p.add_argument(
        "--config-override", "-c", action="append", default=[], metavar="KEY=VALUE",
        help="codex config override (repeatable)",
    )
    p.add_argument("--profile", help="codex config profile")
    p.add_argument(
        "--image", "-i", action="append", default=[], metavar="PATH",
        help="Attach an image (repeatable)",
    )
    p.add_argument("--search", action="store_true", help="Enable web search")
    p.add_argument("--oss", action="store_true", help="Use a local open-source model provider")
    p.add_argument(
        "--local-provider", choices=[v.value for v in LocalProvider],
        help="Local model server",
    )
    p.add_argument("--enable", action="append", default=[], metavar="FEATURE")
    p.add_argument("--disable", action="append", default=[], metavar="FEATURE")
    p.add_argument(
        "--add-dir", action="append", default=[], metavar="DIR",
        help="Additional writable directory (repeatable)",
    )
    p.add_argument("--tool-output-token-limit", type=int, metavar="N")
    p.add_argument(
        "--reasoning-effort", choices=[e.value for e in ReasoningEffort],
    )


def _add_session_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--session", metavar="ID", help="Session id to continue or create")
    p.add_argument(
        "--reset-session", action="store_true",
        help="Discard the session's conversation before asking",
    )


def _add_timeout_argument(
    p: argparse.ArgumentParser,
    help_text: str = "Execution timeout in seconds (0 disables it)",
) -> None:
    p.add_argument("--timeout", type=float, metavar="SECONDS", help=help_text)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codex-bridge",
        description="Run prompts through the OpenAI Codex CLI with session continuity",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file", metavar="PATH",
        help="Also write logs to a rotating file",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (engine, sessions, models sections)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    ask = sub.add_parser("ask", help="Send a prompt to codex")
    ask.add_argument("prompt", help="Prompt text; @path references select files")
    _add_invocation_arguments(ask)
    ask.add_argument(
        "--change-mode", action="store_true",
        help="Ask for structured OLD/NEW edit blocks",
    )
    ask.add_argument("--concise", action="store_true", help="Ask for a brief answer")
    _add_session_arguments(ask)
    _add_timeout_argument(ask)

    batch = sub.add_parser("batch", help="Run a file of atomic tasks in priority order")
    batch.add_argument("tasks_file", metavar="TASKS", help="YAML or JSON task list")
    _add_invocation_arguments(batch)
    batch.add_argument(
        "--keep-going", action="store_false", dest="stop_on_error",
        help="Run remaining tasks after a failure (default: skip them)",
    )
    _add_timeout_argument(batch, "Timeout per task in seconds")

    review = sub.add_parser("review", help="Review the current git changes with codex /review")
    review.add_argument(
        "prompt", nargs="?", default="",
        help="Extra review context, or a full slash command",
    )
    review.add_argument("--model", "-m", help="Model name (default: first available)")
    review.add_argument("--working-dir", help="Repository to review (sent as -C)")
    _add_timeout_argument(review, "Timeout in seconds (default: 180)")

    brainstorm = sub.add_parser("brainstorm", help="Generate ideas with a structured framework")
    brainstorm.add_argument("prompt", help="Brainstorming challenge or question")
    brainstorm.add_argument(
        "--methodology", choices=[m.value for m in BrainstormMethodology],
        default=BrainstormMethodology.AUTO.value,
    )
    brainstorm.add_argument("--domain", help="e.g. software, business, research")
    brainstorm.add_argument("--constraints", help="Budget, time, technical limits")
    brainstorm.add_argument("--context", dest="existing_context", help="Background or previous attempts")
    brainstorm.add_argument("--ideas", type=int, default=DEFAULT_IDEA_COUNT, metavar="N")
    brainstorm.add_argument(
        "--no-analysis", action="store_false", dest="include_analysis",
        help="Skip feasibility/impact ratings",
    )
    _add_invocation_arguments(brainstorm)
    _add_session_arguments(brainstorm)
    _add_timeout_argument(brainstorm)

    health = sub.add_parser("health", help="Check the codex installation")
    health.add_argument("--session", metavar="ID", help="Also check this session")
    health.add_argument(
        "--verbose", "-v", action="store_true", dest="health_verbose",
        help="Show the feature table",
    )

    sub.add_parser("sessions", help="List active sessions")
    return parser


def configure_logging(level_name: str, verbose: bool, log_file: str | None) -> None:
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(file_handler)


def _parse_overrides(pairs: list[str]) -> ConfigOverrides | None:
    if not pairs:
        return None
    overrides = ConfigOverrides()
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise BridgeError(f"Invalid config override {pair!r} (expected KEY=VALUE)")
        overrides.set(key, value)
    return overrides


def options_from_args(args: argparse.Namespace) -> BuildOptions:
    return BuildOptions(
        model=args.model,
        full_auto=args.full_auto,
        approval_policy=args.approval_policy,
        sandbox_mode=args.sandbox,
        yolo=args.yolo,
        cd=args.cd,
        working_dir=args.working_dir,
        config=_parse_overrides(args.config_override),
        profile=args.profile,
        images=list(args.image),
        search=args.search,
        oss=args.oss,
        local_provider=args.local_provider,
        enable_features=list(args.enable),
        disable_features=list(args.disable),
        add_dirs=list(args.add_dir),
        tool_output_token_limit=args.tool_output_token_limit,
        reasoning_effort=args.reasoning_effort,
        change_mode=getattr(args, "change_mode", False),
        concise_prompt=getattr(args, "concise", False),
    )


def render_ask(console: Console, result: AskResult) -> int:
    if result.error is not None:
        console.print(Panel(Markdown(result.error.to_user_string()), style="red"))
        return 1
    if result.partial:
        console.print("[yellow]Codex did not finish; showing partial output.[/yellow]")
    console.print(result.text.rstrip() or "(no output)", markup=False, highlight=False)
    parts = []
    if result.session_id:
        parts.append(f"session: {result.session_id}")
    if result.conversation_id:
        parts.append(f"conversation: {result.conversation_id}")
    if result.model:
        parts.append(f"model: {result.model}")
    if parts:
        console.print("  ".join(parts), style="dim", markup=False)
    return 0


def render_batch(console: Console, report: BatchReport) -> int:
    console.print(Markdown(report.to_markdown()))
    if report.all_failed:
        console.print(f"[red]All {report.failed} tasks failed.[/red]")
    return 1 if report.failed else 0


def render_review(console: Console, review: ReviewResult) -> int:
    if not review.ok:
        return render_ask(console, review.ask)
    console.print(Markdown(review.to_markdown()))
    return 0


def render_health(console: Console, health: HealthStatus, verbose: bool) -> int:
    color = "green" if health.status == STATUS_HEALTHY else (
        "red" if not health.installed else "yellow"
    )
    console.print(
        f"[bold {color}]{health.status.upper()}[/bold {color}]  "
        f"codex {health.version} ({health.command})"
    )
    stats = health.sessions
    console.print(
        f"Sessions: {stats.get('total', 0)}/{stats.get('max_sessions', 0)} "
        f"({stats.get('with_conversation_id', 0)} resumable)"
    )
    if health.session is not None:
        state = "active" if health.session.get("exists") else "missing"
        console.print(f"Session {health.session['session_id']}: {state}")
    if verbose and health.features:
        table = Table(title="Features")
        table.add_column("Feature")
        table.add_column("Supported")
        for name, ok in health.features.items():
            table.add_row(name, "[green]yes[/green]" if ok else "[red]no[/red]")
        console.print(table)
    for issue in health.issues:
        console.print(f"- {issue}", style="yellow", markup=False)
    return 0 if health.installed else 1


def render_sessions(console: Console, client: CodexClient) -> int:
    sessions = client.sessions.list_sessions()
    if not sessions:
        console.print("No active sessions.")
        return 0
    table = Table(title=f"Sessions ({len(sessions)})")
    for column in ("Session", "Workspace", "Conversation", "Model", "Working dir"):
        table.add_column(column)
    for s in sessions:
        table.add_row(
            s.session_id,
            s.workspace_id,
            s.conversation_id or "-",
            s.model or "-",
            s.working_dir or "-",
        )
    console.print(table)
    return 0


async def _run(args: argparse.Namespace, client: CodexClient, console: Console) -> int:
    if args.command == "ask":
        result = await client.ask(
            args.prompt,
            options_from_args(args),
            session_id=args.session,
            reset_session=args.reset_session,
            timeout=args.timeout,
        )
        return render_ask(console, result)
    if args.command == "batch":
        options = options_from_args(args)
        if not (options.yolo or options.full_auto or options.sandbox_mode):
            options.sandbox_mode = SandboxMode.WORKSPACE_WRITE.value
        report = await run_batch(
            client,
            load_tasks(args.tasks_file),
            options,
            stop_on_error=args.stop_on_error,
            timeout=args.timeout,
            on_progress=lambda text: console.print(text, style="dim", markup=False),
        )
        return render_batch(console, report)
    if args.command == "review":
        review = await run_review(
            client,
            args.prompt,
            model=args.model,
            working_dir=args.working_dir,
            timeout=args.timeout,
        )
        return render_review(console, review)
    if args.command == "brainstorm":
        request = BrainstormRequest(
            challenge=args.prompt,
            methodology=args.methodology,
            domain=args.domain,
            constraints=args.constraints,
            existing_context=args.existing_context,
            idea_count=args.ideas,
            include_analysis=args.include_analysis,
        )
        result = await run_brainstorm(
            client,
            request,
            options_from_args(args),
            session_id=args.session,
            reset_session=args.reset_session,
            timeout=args.timeout,
        )
        return render_ask(console, result)
    if args.command == "health":
        health = await check_health(client.version_probe, client.sessions, args.session)
        return render_health(console, health, args.health_verbose)
    return render_sessions(console, client)


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    config = BridgeConfig.from_env()
    configure_logging(config.log_level, args.verbose, args.log_file)

    console = Console()
    try:
        if args.config:
            config = load_yaml_config(args.config, base=config)
        client = CodexClient.from_config(config)
        code = asyncio.run(_run(args, client, console))
    except BridgeError as exc:
        console.print(f"[red]Error:[/red] {exc}", highlight=False)
        sys.exit(2)
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()
