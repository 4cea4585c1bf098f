"""Async subprocess runner for the codex CLI.

Uses asyncio.create_subprocess_exec (array-based, no shell) for
safe argument passing. Output is captured incrementally so whatever
was produced before a timeout or crash can still be salvaged.
"""
from __future__ import annotations

import asyncio
import codecs
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence

from .models import ExecutionResult

logger = logging.getLogger(__name__)

# Called with each newly decoded stdout chunk. May be sync or async.
ProgressCallback = Callable[[str], Awaitable[None] | None]

_READ_CHUNK_BYTES = 4096
_TERMINATE_GRACE_SECONDS = 5.0


class _OutputBuffer:
    """Accumulates decoded output up to a byte cap."""

    def __init__(self, max_bytes: int | None) -> None:
        self._max_bytes = max_bytes
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._parts: list[str] = []
        self._size = 0
        self.truncated = False

    def feed(self, chunk: bytes) -> str:
        if self._max_bytes is not None and self._max_bytes > 0:
            remaining = self._max_bytes - self._size
            if remaining <= 0:
                self.truncated = True
                return ""
            if len(chunk) > remaining:
                chunk = chunk[:remaining]
                self.truncated = True
        self._size += len(chunk)
        text = self._decoder.decode(chunk)
        if text:
            self._parts.append(text)
        return text

    def text(self) -> str:
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._parts.append(tail)
        return "".join(self._parts)


class ProcessExecutor:
    """Runs external commands and reports their observable outcome.

    Never raises for process-level failures: a missing binary, a
    non-zero exit, or a timeout all come back as an unsuccessful
    ExecutionResult.
    """

    def __init__(
        self,
        default_timeout: float | None = 600.0,
        max_output_bytes: int | None = 10 * 1024 * 1024,
    ) -> None:
        self._default_timeout = default_timeout
        self._max_output_bytes = max_output_bytes

    async def run(
        self,
        command: str,
        args: Sequence[str],
        *,
        timeout: float | None = None,
        max_output_bytes: int | None = None,
        on_progress: ProgressCallback | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> ExecutionResult:
        """Run ``command args...`` and capture stdout/stderr.

        Args:
            timeout: Seconds before the process is killed. ``None``
                uses the executor default; ``0`` or negative disables it.
            max_output_bytes: Cap per stream; excess output is dropped.
            on_progress: Receives stdout text as it arrives.
        """
        if timeout is None:
            timeout = self._default_timeout
        if timeout is not None and timeout <= 0:
            timeout = None
        cap = max_output_bytes if max_output_bytes is not None else self._max_output_bytes

        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=dict(env) if env is not None else None,
                cwd=cwd,
            )
        except FileNotFoundError:
            logger.debug("Executable not found: %s", command)
            return ExecutionResult(
                success=False,
                stderr=f"spawn {command} ENOENT",
            )
        except PermissionError as exc:
            return ExecutionResult(
                success=False,
                stderr=f"spawn {command} EACCES: permission denied ({exc})",
            )

        stdout_buf = _OutputBuffer(cap)
        stderr_buf = _OutputBuffer(cap)

        async def _drain() -> int:
            await asyncio.gather(
                _pump(proc.stdout, stdout_buf, on_progress),
                _pump(proc.stderr, stderr_buf, None),
            )
            return await proc.wait()

        timed_out = False
        exit_code: int | None
        try:
            exit_code = await asyncio.wait_for(_drain(), timeout=timeout)
        except asyncio.TimeoutError:
            timed_out = True
            exit_code = await _terminate(proc)
            logger.warning(
                "%s timed out after %ss (pid=%s)", command, timeout, proc.pid,
            )

        stdout = stdout_buf.text()
        stderr = stderr_buf.text()
        if stdout_buf.truncated or stderr_buf.truncated:
            logger.warning(
                "Output of %s exceeded %s bytes and was truncated", command, cap,
            )
        if timed_out and not stderr:
            stderr = f"{command} timed out after {timeout}s"

        success = not timed_out and exit_code == 0
        return ExecutionResult(
            success=success,
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            timed_out=timed_out,
            partial_stdout="" if success else stdout,
        )


async def notify_progress(on_progress: ProgressCallback | None, text: str) -> None:
    """Deliver *text* to a sync or async progress callback, if any.

    Callback failures are logged and never interrupt the run.
    """
    if on_progress is None:
        return
    try:
        result = on_progress(text)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.debug("Progress callback failed", exc_info=True)


async def _pump(
    stream: asyncio.StreamReader | None,
    buffer: _OutputBuffer,
    on_progress: ProgressCallback | None,
) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            break
        text = buffer.feed(chunk)
        if text:
            await notify_progress(on_progress, text)


async def _terminate(proc: asyncio.subprocess.Process) -> int | None:
    """Terminate, then kill, a process that outlived its timeout."""
    try:
        proc.terminate()
        try:
            return await asyncio.wait_for(
                proc.wait(), timeout=_TERMINATE_GRACE_SECONDS,
            )
        except asyncio.TimeoutError:
            proc.kill()
            return await proc.wait()
    except ProcessLookupError:
        return proc.returncode
