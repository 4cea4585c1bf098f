"""High-level ask flow tying the bridge components together.

One CodexClient owns a shared VersionProbe, ModelAvailabilityResolver,
SessionStore and CommandBuilder. Each ask() call resolves its session,
builds the invocation, runs codex, and records the outcome.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any

from ..shared.services.working_dir import WorkingDirResolver
from .command_builder import CommandBuilder, cleanup_temp_file
from .config import BridgeConfig
from .error_classifier import CodexError, create_error, retry_delay
from .executor import ProcessExecutor, ProgressCallback
from .model_availability import ModelAvailabilityResolver
from .models import BuildOptions, ExecutionResult
from .session_store import SessionStore, parse_conversation_id
from .version_probe import VersionProbe

logger = logging.getLogger(__name__)

# Partial stdout longer than this is returned instead of an error.
MIN_SALVAGE_CHARS = 1000

MAX_STORED_PROMPT_CHARS = 1000


@dataclass
class AskResult:
    """Outcome of one CodexClient.ask() call."""
    text: str
    # None for ephemeral calls, which bypass the session table.
    session_id: str | None
    stderr: str = ""
    conversation_id: str | None = None
    model: str | None = None
    use_resume: bool = False
    partial: bool = False
    attempts: int = 1
    error: CodexError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _model_from_args(args: list[str]) -> str | None:
    try:
        return args[args.index("-m") + 1]
    except (ValueError, IndexError):
        return None


class CodexClient:
    """Runs prompts through the codex CLI with session continuity."""

    def __init__(
        self,
        config: BridgeConfig | None = None,
        *,
        executor: ProcessExecutor | None = None,
        version_probe: VersionProbe | None = None,
        model_resolver: ModelAvailabilityResolver | None = None,
        session_store: SessionStore | None = None,
        builder: CommandBuilder | None = None,
        working_dir_resolver: WorkingDirResolver | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config if config is not None else BridgeConfig()
        if executor is None:
            executor = ProcessExecutor(
                default_timeout=self.config.timeout_seconds,
                max_output_bytes=self.config.max_output_bytes,
            )
        self.executor = executor
        if version_probe is None:
            version_probe = VersionProbe(self.executor, self.config.command)
        self.version_probe = version_probe
        if model_resolver is None:
            model_resolver = ModelAvailabilityResolver(
                self.executor,
                self.config.command,
                known_models=self.config.known_models,
                fallback_chain=self.config.model_fallback,
                last_resort=self.config.last_resort_model,
            )
        self.model_resolver = model_resolver
        # An empty SessionStore has len() == 0, so test against None.
        if session_store is None:
            session_store = SessionStore(
                ttl_seconds=self.config.session_ttl_seconds,
                max_sessions=self.config.max_sessions,
            )
        self.sessions = session_store
        if working_dir_resolver is None:
            working_dir_resolver = WorkingDirResolver()
        self.working_dir_resolver = working_dir_resolver
        if builder is None:
            builder = CommandBuilder(
                self.version_probe,
                self.model_resolver,
                self.working_dir_resolver,
            )
        self.builder = builder
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: BridgeConfig) -> CodexClient:
        return cls(config)

    async def ask(
        self,
        prompt: str,
        options: BuildOptions | None = None,
        *,
        session_id: str | None = None,
        reset_session: bool = False,
        ephemeral: bool = False,
        timeout: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> AskResult:
        """Run *prompt* and return its output.

        Invocation failures come back as ``AskResult.error``; only
        option conflicts (OptionConflictError) are raised, and they are
        raised before the session table is touched.

        An *ephemeral* call neither resumes nor records a session; batch
        tasks and reviews use it so they leave the workspace conversation
        alone.
        """
        options = replace(options) if options is not None else BuildOptions()
        self.builder.validate(options)
        if not options.model and self.config.default_model:
            options.model = self.config.default_model

        working_dir = self.working_dir_resolver.resolve(
            working_dir=options.working_dir or options.cd, prompt=prompt,
        )

        run_session_id = None
        if not ephemeral:
            run_session_id = self._prepare_session(
                options, working_dir, session_id, reset_session,
            )

        max_attempts = 1 + max(self.config.max_retries, 0)
        attempt = 0
        while True:
            attempt += 1
            result, build_args, use_resume = await self._run_once(
                prompt, options, timeout, on_progress,
            )
            model = _model_from_args(build_args)

            if result.success:
                return self._record_success(
                    run_session_id, prompt, result, model,
                    working_dir, use_resume, attempt,
                )

            salvaged = self._salvage(run_session_id, result, model, use_resume, attempt)
            if salvaged is not None:
                return salvaged

            error = self._classify_failure(result, run_session_id, model, timeout)
            if error.retryable and attempt < max_attempts:
                delay = retry_delay(error, attempt)
                logger.warning(
                    "%s (attempt %d/%d), retrying in %.1fs",
                    error.title, attempt, max_attempts, delay,
                )
                await self._sleep(delay)
                continue

            logger.error("Codex execution failed: %s: %s", error.title, error.message)
            return AskResult(
                text="",
                session_id=run_session_id,
                stderr=result.stderr,
                conversation_id=options.conversation_id,
                model=model,
                use_resume=use_resume,
                attempts=attempt,
                error=error,
            )

    def _prepare_session(
        self,
        options: BuildOptions,
        working_dir: str,
        session_id: str | None,
        reset_session: bool,
    ) -> str:
        if reset_session:
            stale = self.sessions.get_or_create(working_dir, session_id)
            self.sessions.delete(stale.session_id)
            logger.info("Reset session %s", stale.session_id)
        session = self.sessions.get_or_create(working_dir, session_id)

        if not options.conversation_id and session.conversation_id:
            options.conversation_id = session.conversation_id
            logger.debug(
                "Continuing session %s (conversation %s)",
                session.session_id, session.conversation_id,
            )
        return session.session_id

    async def _run_once(
        self,
        prompt: str,
        options: BuildOptions,
        timeout: float | None,
        on_progress: ProgressCallback | None,
    ) -> tuple[ExecutionResult, list[str], bool]:
        build = await self.builder.build(prompt, options)
        logger.debug("Executing: %s %s", self.config.command, " ".join(build.args[:-1]))
        try:
            result = await self.executor.run(
                self.config.command,
                build.args,
                timeout=timeout if timeout is not None else self.config.timeout_seconds,
                max_output_bytes=self.config.max_output_bytes,
                on_progress=on_progress,
            )
        finally:
            cleanup_temp_file(build.temp_file)
        return result, build.args, build.use_resume

    def _record_success(
        self,
        session_id: str | None,
        prompt: str,
        result: ExecutionResult,
        model: str | None,
        working_dir: str,
        use_resume: bool,
        attempt: int,
    ) -> AskResult:
        conversation_id = (
            parse_conversation_id(result.stdout)
            or parse_conversation_id(result.stderr)
        )
        if session_id is None:
            return AskResult(
                text=result.stdout,
                session_id=None,
                stderr=result.stderr,
                conversation_id=conversation_id,
                model=model,
                use_resume=use_resume,
                attempts=attempt,
            )
        self.sessions.save(
            session_id,
            conversation_id=conversation_id,
            last_prompt=prompt[:MAX_STORED_PROMPT_CHARS],
            last_response=result.stdout,
            model=model,
            working_dir=working_dir,
        )
        if conversation_id:
            logger.debug("Captured conversation id %s for %s", conversation_id, session_id)
        return AskResult(
            text=result.stdout,
            session_id=session_id,
            stderr=result.stderr,
            conversation_id=conversation_id or self.sessions.get_conversation_id(session_id),
            model=model,
            use_resume=use_resume,
            attempts=attempt,
        )

    @staticmethod
    def _salvage(
        session_id: str | None,
        result: ExecutionResult,
        model: str | None,
        use_resume: bool,
        attempt: int,
    ) -> AskResult | None:
        partial = result.partial_stdout
        if len(partial) <= MIN_SALVAGE_CHARS:
            return None
        logger.warning(
            "Codex failed (exit=%s, timed_out=%s) but produced %d chars; "
            "returning partial output",
            result.exit_code, result.timed_out, len(partial),
        )
        return AskResult(
            text=partial,
            session_id=session_id,
            stderr=result.stderr,
            model=model,
            use_resume=use_resume,
            partial=True,
            attempts=attempt,
        )

    def _classify_failure(
        self,
        result: ExecutionResult,
        session_id: str | None,
        model: str | None,
        timeout: float | None,
    ) -> CodexError:
        if result.timed_out:
            limit = timeout if timeout is not None else self.config.timeout_seconds
            message = f"Codex timed out after {limit}s"
        else:
            message = result.stderr.strip() or f"Codex exited with code {result.exit_code}"
        return create_error(
            message,
            context={
                "session_id": session_id,
                "model": model,
                "exit_code": result.exit_code,
            },
        )
