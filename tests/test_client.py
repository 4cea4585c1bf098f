"""Tests for the CodexClient ask flow."""
from __future__ import annotations

import os

import pytest

from codex_bridge.engine.client import MIN_SALVAGE_CHARS, CodexClient
from codex_bridge.engine.command_builder import CommandBuilder
from codex_bridge.engine.config import BridgeConfig
from codex_bridge.engine.errors import OptionConflictError
from codex_bridge.engine.model_availability import ModelAvailabilityResolver
from codex_bridge.engine.models import BuildOptions, ErrorCategory, ExecutionResult
from codex_bridge.engine.session_store import SessionStore
from codex_bridge.engine.version_probe import VersionProbe
from codex_bridge.shared.services.working_dir import WorkingDirResolver


class CodexStub:
    """Fake executor standing in for the codex binary.

    ``--version`` and model probes always succeed; real invocations
    consume ``responses`` in order (the last one repeats).
    """

    def __init__(self, *responses: ExecutionResult, version: str = "0.60.0"):
        self.responses = list(responses) or [ExecutionResult(success=True, stdout="ok")]
        self.version = version
        self.invocations: list[list[str]] = []
        self.temp_files_seen: list[str] = []

    async def run(self, command, args, *, timeout=None, **kwargs):
        args = list(args)
        if args == ["--version"]:
            return ExecutionResult(success=True, stdout=f"codex-cli {self.version}")
        if args[0] == "exec" and args[-1] == "echo test":
            return ExecutionResult(success=True, stdout="test")
        self.invocations.append(args)
        if args[-1].startswith("@"):
            path = args[-1][1:]
            self.temp_files_seen.append(path)
            assert os.path.exists(path)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _client(stub: CodexStub, tmp_path, **config_kwargs):
    config = BridgeConfig(**config_kwargs)
    sleep = SleepRecorder()
    client = CodexClient(
        config,
        executor=stub,
        session_store=SessionStore(workspace_id=lambda path: "ws-" + os.path.basename(path)),
        working_dir_resolver=WorkingDirResolver(env={}),
        sleep=sleep,
    )
    return client, sleep


def _opts(tmp_path, **kwargs) -> BuildOptions:
    return BuildOptions(working_dir=str(tmp_path), **kwargs)


@pytest.mark.asyncio
async def test_success_records_session(tmp_path):
    stub = CodexStub(ExecutionResult(
        success=True, stdout="Conversation ID: conv-42\nHere is the answer",
    ))
    client, _ = _client(stub, tmp_path)
    result = await client.ask("explain", _opts(tmp_path))

    assert result.ok
    assert "Here is the answer" in result.text
    assert result.conversation_id == "conv-42"
    assert result.model == "gpt-5.3-codex"
    session = client.sessions.get(result.session_id)
    assert session.conversation_id == "conv-42"
    assert session.last_prompt == "explain"
    assert session.working_dir == str(tmp_path)


@pytest.mark.asyncio
async def test_follow_up_resumes_conversation(tmp_path):
    stub = CodexStub(
        ExecutionResult(success=True, stdout="conversation id: conv-1\nfirst"),
        ExecutionResult(success=True, stdout="second"),
    )
    client, _ = _client(stub, tmp_path)
    first = await client.ask("one", _opts(tmp_path))
    second = await client.ask("two", _opts(tmp_path))

    assert second.session_id == first.session_id
    assert second.use_resume
    assert stub.invocations[-1][-4:] == ["exec", "resume", "conv-1", "two"]
    assert second.conversation_id == "conv-1"


@pytest.mark.asyncio
async def test_no_resume_on_old_cli(tmp_path):
    stub = CodexStub(
        ExecutionResult(success=True, stdout="conversation id: conv-1"),
        version="0.30.0",
    )
    client, _ = _client(stub, tmp_path)
    await client.ask("one", _opts(tmp_path))
    second = await client.ask("two", _opts(tmp_path))
    assert not second.use_resume
    assert "resume" not in stub.invocations[-1]


@pytest.mark.asyncio
async def test_reset_session_starts_fresh(tmp_path):
    stub = CodexStub(ExecutionResult(success=True, stdout="conversation id: conv-1"))
    client, _ = _client(stub, tmp_path)
    await client.ask("one", _opts(tmp_path), session_id="mine")
    assert client.sessions.get_conversation_id("mine") == "conv-1"

    stub.responses = [ExecutionResult(success=True, stdout="fresh")]
    result = await client.ask("two", _opts(tmp_path), session_id="mine", reset_session=True)
    assert result.session_id == "mine"
    assert not result.use_resume
    assert "resume" not in stub.invocations[-1]
    assert client.sessions.get_conversation_id("mine") is None


@pytest.mark.asyncio
async def test_explicit_session_id_kept(tmp_path):
    client, _ = _client(CodexStub(), tmp_path)
    result = await client.ask("hi", _opts(tmp_path), session_id="custom-1")
    assert result.session_id == "custom-1"


@pytest.mark.asyncio
async def test_failure_is_classified(tmp_path):
    stub = CodexStub(ExecutionResult(
        success=False, exit_code=1, stderr="Error: 401 Unauthorized",
    ))
    client, sleep = _client(stub, tmp_path, max_retries=3)
    result = await client.ask("hi", _opts(tmp_path))
    assert not result.ok
    assert result.error.category == ErrorCategory.AUTHENTICATION
    assert result.error.context["session_id"] == result.session_id
    assert sleep.delays == []
    assert len(stub.invocations) == 1


@pytest.mark.asyncio
async def test_timeout_reported(tmp_path):
    stub = CodexStub(ExecutionResult(
        success=False, timed_out=True, stderr="codex timed out after 5s",
    ))
    client, _ = _client(stub, tmp_path)
    result = await client.ask("hi", _opts(tmp_path), timeout=5)
    assert result.error.category == ErrorCategory.TIMEOUT
    assert result.error.message == "Codex timed out after 5s"


@pytest.mark.asyncio
async def test_large_partial_output_salvaged(tmp_path):
    partial = "y" * (MIN_SALVAGE_CHARS + 1)
    stub = CodexStub(ExecutionResult(
        success=False, timed_out=True, stdout=partial, partial_stdout=partial,
    ))
    client, _ = _client(stub, tmp_path)
    result = await client.ask("hi", _opts(tmp_path))
    assert result.ok
    assert result.partial
    assert result.text == partial


@pytest.mark.asyncio
async def test_small_partial_output_not_salvaged(tmp_path):
    stub = CodexStub(ExecutionResult(
        success=False, exit_code=1, stdout="tiny", partial_stdout="tiny",
        stderr="connect ECONNREFUSED",
    ))
    client, _ = _client(stub, tmp_path)
    result = await client.ask("hi", _opts(tmp_path))
    assert result.error.category == ErrorCategory.NETWORK


@pytest.mark.asyncio
async def test_retryable_failure_retried(tmp_path):
    stub = CodexStub(
        ExecutionResult(success=False, exit_code=1, stderr="429 Too Many Requests"),
        ExecutionResult(success=True, stdout="finally"),
    )
    client, sleep = _client(stub, tmp_path, max_retries=2)
    result = await client.ask("hi", _opts(tmp_path))
    assert result.ok
    assert result.text == "finally"
    assert result.attempts == 2
    assert len(sleep.delays) == 1
    assert 60.0 <= sleep.delays[0] <= 61.0


@pytest.mark.asyncio
async def test_retries_exhausted(tmp_path):
    stub = CodexStub(ExecutionResult(success=False, exit_code=1, stderr="network unreachable"))
    client, sleep = _client(stub, tmp_path, max_retries=2)
    result = await client.ask("hi", _opts(tmp_path))
    assert result.error.category == ErrorCategory.NETWORK
    assert result.attempts == 3
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
async def test_no_retry_by_default(tmp_path):
    stub = CodexStub(ExecutionResult(success=False, exit_code=1, stderr="rate limit"))
    client, sleep = _client(stub, tmp_path)
    result = await client.ask("hi", _opts(tmp_path))
    assert result.attempts == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_temp_file_removed_after_run(tmp_path):
    stub = CodexStub(ExecutionResult(success=False, exit_code=1, stderr="boom"))
    config = BridgeConfig()
    probe = VersionProbe(stub)
    resolver = ModelAvailabilityResolver(stub)
    wd = WorkingDirResolver(env={})
    builder = CommandBuilder(
        probe, resolver, wd, max_inline_prompt_bytes=10, temp_dir=str(tmp_path),
    )
    client = CodexClient(
        config,
        executor=stub,
        version_probe=probe,
        model_resolver=resolver,
        builder=builder,
        working_dir_resolver=wd,
    )
    await client.ask("a long prompt body", _opts(tmp_path))
    assert len(stub.temp_files_seen) == 1
    assert not os.path.exists(stub.temp_files_seen[0])


@pytest.mark.asyncio
async def test_option_conflict_raised(tmp_path):
    stub = CodexStub()
    client, _ = _client(stub, tmp_path)
    with pytest.raises(OptionConflictError):
        await client.ask("hi", _opts(tmp_path, yolo=True, sandbox_mode="read-only"))
    assert stub.invocations == []
    assert len(client.sessions) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("reset_session", [False, True])
async def test_option_conflict_leaves_sessions_untouched(tmp_path, reset_session):
    stub = CodexStub()
    client, _ = _client(stub, tmp_path)
    client.sessions.save("S1", conversation_id="conv-1", working_dir=str(tmp_path))
    before = client.sessions.get("S1")

    conflicting = _opts(tmp_path, yolo=True, approval_policy="never")
    with pytest.raises(OptionConflictError):
        await client.ask("hi", conflicting, session_id="S1", reset_session=reset_session)
    with pytest.raises(OptionConflictError):
        await client.ask("hi", conflicting, session_id="NEW", reset_session=reset_session)

    assert client.sessions.get("S1") == before
    assert client.sessions.get("NEW") is None
    assert len(client.sessions) == 1
    assert stub.invocations == []


def test_injected_empty_store_is_used():
    store = SessionStore()
    client = CodexClient(BridgeConfig(), executor=CodexStub(), session_store=store)
    assert client.sessions is store


def test_injected_collaborators_are_kept():
    stub = CodexStub()
    versions = VersionProbe(stub)
    resolver = ModelAvailabilityResolver(stub)
    wd = WorkingDirResolver(env={})
    client = CodexClient(
        executor=stub, version_probe=versions, model_resolver=resolver,
        working_dir_resolver=wd,
    )
    assert client.executor is stub
    assert client.version_probe is versions
    assert client.model_resolver is resolver
    assert client.working_dir_resolver is wd


@pytest.mark.asyncio
async def test_shared_store_sees_sessions_from_both_clients(tmp_path):
    store = SessionStore(workspace_id=lambda path: "ws-" + os.path.basename(path))
    first = CodexClient(
        executor=CodexStub(ExecutionResult(success=True, stdout="conversation id: conv-9")),
        session_store=store,
        working_dir_resolver=WorkingDirResolver(env={}),
    )
    second = CodexClient(
        executor=CodexStub(),
        session_store=store,
        working_dir_resolver=WorkingDirResolver(env={}),
    )
    result = await first.ask("one", _opts(tmp_path))
    follow_up = await second.ask("two", _opts(tmp_path))

    assert follow_up.session_id == result.session_id
    assert follow_up.use_resume
    assert store.get(result.session_id).workspace_id == "ws-" + tmp_path.name


@pytest.mark.asyncio
async def test_config_default_model_used(tmp_path):
    stub = CodexStub()
    client, _ = _client(stub, tmp_path, default_model="gpt-5.2")
    result = await client.ask("hi", _opts(tmp_path))
    assert result.model == "gpt-5.2"
    assert stub.invocations[-1][:2] == ["-m", "gpt-5.2"]


@pytest.mark.asyncio
async def test_ephemeral_ask_bypasses_sessions(tmp_path):
    stub = CodexStub(ExecutionResult(success=True, stdout="conversation id: conv-1\nfirst"))
    client, _ = _client(stub, tmp_path)
    await client.ask("one", _opts(tmp_path))
    before = client.sessions.list_sessions()

    stub.responses = [ExecutionResult(success=True, stdout="conversation id: conv-x\nside")]
    result = await client.ask("side task", _opts(tmp_path), ephemeral=True)

    assert result.ok
    assert result.session_id is None
    assert result.conversation_id == "conv-x"
    assert "resume" not in stub.invocations[-1]
    assert client.sessions.list_sessions() == before
