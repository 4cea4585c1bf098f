"""Tests for the in-memory session store."""
from __future__ import annotations

import re
import threading

import pytest

from codex_bridge.engine.session_store import (
    MAX_STORED_RESPONSE_CHARS,
    SessionStore,
    generate_session_id,
    parse_conversation_id,
    session_to_dict,
)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _workspace_of(path: str) -> str:
    """Deterministic stand-in: the last path component is the workspace."""
    return "ws-" + path.rstrip("/").rsplit("/", 1)[-1]


def _make_store(clock=None, ttl=86400, max_sessions=50):
    counter = iter(range(1, 10_000))
    return SessionStore(
        ttl_seconds=ttl,
        max_sessions=max_sessions,
        clock=clock or FakeClock(),
        workspace_id=_workspace_of,
        id_factory=lambda: f"ses_{next(counter)}",
    )


# ── conversation id parsing ─────────────────────────────────────


class TestParseConversationId:

    @pytest.mark.parametrize("output,expected", [
        ("Conversation ID: abc-123\nhello", "abc-123"),
        ("conversation id:xyz", "xyz"),
        ("conv_id=0199a-ff", "0199a-ff"),
        ("conversation-id: deadbeef", "deadbeef"),
        ("session id: 7f3e-1", "7f3e-1"),
    ])
    def test_patterns(self, output, expected):
        assert parse_conversation_id(output) == expected

    def test_first_pattern_wins(self):
        text = "session id: later\nconversation id: first"
        assert parse_conversation_id(text) == "first"

    @pytest.mark.parametrize("output", ["", "no identifiers here", "conversation id:"])
    def test_absent(self, output):
        assert parse_conversation_id(output) is None


def test_generated_session_id_shape():
    assert re.fullmatch(r"ses_[0-9a-z]+_[0-9a-z]{6}", generate_session_id())
    assert generate_session_id() != generate_session_id()


# ── get_or_create ───────────────────────────────────────────────


class TestGetOrCreate:

    def test_creates_with_generated_id(self):
        store = _make_store()
        session = store.get_or_create("/work/alpha")
        assert session.session_id == "ses_1"
        assert session.workspace_id == "ws-alpha"
        assert session.working_dir == "/work/alpha"
        assert session.conversation_id is None

    def test_reuses_workspace_session(self):
        store = _make_store()
        first = store.get_or_create("/work/alpha")
        again = store.get_or_create("/work/alpha")
        assert again.session_id == first.session_id
        assert len(store) == 1

    def test_different_workspaces_isolated(self):
        store = _make_store()
        a = store.get_or_create("/work/alpha")
        b = store.get_or_create("/work/beta")
        assert a.session_id != b.session_id

    def test_explicit_id_never_returns_other_workspace_session(self):
        store = _make_store()
        existing = store.get_or_create("/work/alpha")
        explicit = store.get_or_create("/work/alpha", "mine")
        assert explicit.session_id == "mine"
        assert explicit.session_id != existing.session_id

    def test_explicit_id_returns_live_record(self):
        store = _make_store()
        store.get_or_create("/work/alpha", "mine")
        store.set_conversation_id("mine", "conv-1")
        again = store.get_or_create("/work/beta", "mine")
        assert again.conversation_id == "conv-1"
        assert again.workspace_id == "ws-alpha"

    def test_newest_workspace_session_preferred(self):
        clock = FakeClock()
        store = _make_store(clock)
        store.get_or_create("/work/alpha", "old")
        clock.now += 10
        store.get_or_create("/work/alpha", "new")
        assert store.get_or_create("/work/alpha").session_id == "new"


# ── save / reads ────────────────────────────────────────────────


class TestSave:

    def test_empty_values_do_not_overwrite(self):
        store = _make_store()
        store.save("s", model="gpt-5.2-codex", last_prompt="hi")
        updated = store.save("s", model=None, last_prompt="")
        assert updated.model == "gpt-5.2-codex"
        assert updated.last_prompt == "hi"

    def test_response_truncated(self):
        store = _make_store()
        saved = store.save("s", last_response="x" * 5000)
        assert len(saved.last_response) == MAX_STORED_RESPONSE_CHARS

    def test_updated_at_refreshed_created_at_kept(self):
        clock = FakeClock()
        store = _make_store(clock)
        created = store.save("s")
        clock.now += 5
        updated = store.save("s", model="m")
        assert updated.created_at == created.created_at
        assert updated.updated_at == created.updated_at + 5

    def test_unknown_field_rejected(self):
        store = _make_store()
        with pytest.raises(TypeError):
            store.save("s", colour="blue")

    def test_returned_records_are_copies(self):
        store = _make_store()
        session = store.save("s", model="m")
        session.model = "changed"
        assert store.get("s").model == "m"

    def test_set_conversation_id_requires_live_session(self):
        store = _make_store()
        assert not store.set_conversation_id("missing", "c")
        store.save("s")
        assert store.set_conversation_id("s", "c")
        assert store.get_conversation_id("s") == "c"

    def test_list_sessions_newest_first(self):
        clock = FakeClock()
        store = _make_store(clock)
        for name in ("a", "b", "c"):
            store.save(name)
            clock.now += 1
        assert [s.session_id for s in store.list_sessions()] == ["c", "b", "a"]

    def test_delete_and_clear(self):
        store = _make_store()
        store.save("a")
        store.save("b")
        assert store.delete("a")
        assert not store.delete("a")
        store.clear()
        assert len(store) == 0

    def test_stats(self):
        store = _make_store(max_sessions=10)
        store.save("a", conversation_id="c1")
        store.save("b")
        assert store.stats() == {
            "total": 2,
            "with_conversation_id": 1,
            "max_sessions": 10,
            "ttl_seconds": 86400,
        }

    def test_session_to_dict(self):
        store = _make_store()
        data = session_to_dict(store.save("a", model="m"))
        assert data["session_id"] == "a"
        assert data["model"] == "m"


# ── expiry and capacity ─────────────────────────────────────────


class TestEviction:

    def test_expired_session_invisible(self):
        clock = FakeClock()
        store = _make_store(clock, ttl=60)
        store.save("s")
        clock.now += 61
        assert store.get("s") is None
        assert len(store) == 0

    def test_session_alive_at_ttl_boundary(self):
        clock = FakeClock()
        store = _make_store(clock, ttl=60)
        store.save("s")
        clock.now += 60
        assert store.get("s") is not None

    def test_capacity_never_exceeded(self):
        clock = FakeClock()
        store = _make_store(clock, max_sessions=3)
        for i in range(10):
            store.save(f"s{i}")
            clock.now += 1
            assert len(store) <= 3
        assert {s.session_id for s in store.list_sessions()} == {"s7", "s8", "s9"}

    def test_oldest_by_update_time_evicted(self):
        clock = FakeClock()
        store = _make_store(clock, max_sessions=2)
        store.save("a")
        clock.now += 1
        store.save("b")
        clock.now += 1
        store.save("a", model="touched")
        clock.now += 1
        store.save("c")
        ids = {s.session_id for s in store.list_sessions()}
        assert ids == {"a", "c"}

    def test_ties_evict_least_recently_saved(self):
        store = _make_store(max_sessions=2)
        store.save("a")
        store.save("b")
        store.save("a", model="m")
        store.save("c")
        assert {s.session_id for s in store.list_sessions()} == {"a", "c"}

    def test_expired_evicted_before_capacity(self):
        clock = FakeClock()
        store = _make_store(clock, ttl=10, max_sessions=2)
        store.save("old")
        clock.now += 5
        store.save("mid")
        clock.now += 6
        store.save("new")
        ids = {s.session_id for s in store.list_sessions()}
        assert ids == {"mid", "new"}

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            SessionStore(max_sessions=0)


def test_concurrent_saves_respect_capacity():
    store = _make_store(max_sessions=20)

    def worker(prefix: str):
        for i in range(50):
            store.save(f"{prefix}-{i}", model="m")

    threads = [threading.Thread(target=worker, args=(f"t{n}",)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(store) == 20


def test_empty_store_is_truthy():
    store = SessionStore()
    assert len(store) == 0
    assert store
    assert (store or None) is store
