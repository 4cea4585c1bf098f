"""Tests for working directory resolution."""
from __future__ import annotations

import os

from codex_bridge.shared.services.working_dir import (
    WorkingDirResolver,
    ensure_directory,
    extract_at_paths,
    find_project_root,
)


def _project(tmp_path):
    root = tmp_path / "proj"
    (root / "src" / "pkg").mkdir(parents=True)
    (root / "pyproject.toml").write_text("[project]\nname='x'\n")
    target = root / "src" / "pkg" / "mod.py"
    target.write_text("x = 1\n")
    return root, target


class TestEnsureDirectory:

    def test_directory(self, tmp_path):
        assert ensure_directory(str(tmp_path)) == str(tmp_path)

    def test_file_resolves_to_parent(self, tmp_path):
        f = tmp_path / "a.txt"
        f.write_text("hi")
        assert ensure_directory(str(f)) == str(tmp_path)

    def test_relative_to_base(self, tmp_path):
        (tmp_path / "sub").mkdir()
        assert ensure_directory("sub", str(tmp_path)) == str(tmp_path / "sub")

    def test_missing(self, tmp_path):
        assert ensure_directory(str(tmp_path / "nope")) is None
        assert ensure_directory(None) is None


def test_find_project_root_walks_up(tmp_path):
    root, target = _project(tmp_path)
    assert find_project_root(str(target)) == str(root)


def test_find_project_root_gives_up_after_ten_levels(tmp_path):
    (tmp_path / ".git").mkdir()
    deep = tmp_path.joinpath(*[f"d{i}" for i in range(12)])
    deep.mkdir(parents=True)
    assert find_project_root(str(deep)) == str(deep)
    shallow = tmp_path / "d0" / "d1"
    assert find_project_root(str(shallow)) == str(tmp_path)


class TestExtractAtPaths:

    def test_forms(self, tmp_path):
        prompt = 'Look at @"my dir/file.py" and @/abs/path.py and @./rel.py and @src/x.py'
        paths = extract_at_paths(prompt, str(tmp_path))
        assert paths == [
            os.path.join(str(tmp_path), "my dir/file.py"),
            "/abs/path.py",
            os.path.join(str(tmp_path), "rel.py"),
            os.path.join(str(tmp_path), "src/x.py"),
        ]

    def test_no_references(self):
        assert extract_at_paths("plain prompt, email me@example.com") == []


class TestResolver:

    def test_explicit_wins(self, tmp_path):
        other = tmp_path / "other"
        other.mkdir()
        resolver = WorkingDirResolver(env={"CODEX_MCP_CWD": str(tmp_path)})
        assert resolver.resolve(str(other)) == str(other)

    def test_invalid_explicit_falls_through_to_env(self, tmp_path):
        resolver = WorkingDirResolver(env={"PWD": str(tmp_path)})
        assert resolver.resolve(str(tmp_path / "missing")) == str(tmp_path)

    def test_env_priority(self, tmp_path):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.mkdir()
        b.mkdir()
        resolver = WorkingDirResolver(env={"PWD": str(b), "CODEX_MCP_CWD": str(a)})
        assert resolver.resolve() == str(a)

    def test_invalid_env_skipped(self, tmp_path):
        resolver = WorkingDirResolver(env={
            "CODEX_MCP_CWD": str(tmp_path / "gone"),
            "INIT_CWD": str(tmp_path),
        })
        assert resolver.resolve() == str(tmp_path)

    def test_inferred_from_at_path(self, tmp_path):
        root, target = _project(tmp_path)
        resolver = WorkingDirResolver(env={})
        assert resolver.resolve(prompt=f"Review @{target}") == str(root)

    def test_falls_back_to_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        resolver = WorkingDirResolver(env={})
        assert resolver.resolve(prompt="no paths here") == os.getcwd()

    def test_reads_process_environment_by_default(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CODEX_MCP_CWD", str(tmp_path))
        assert WorkingDirResolver().resolve() == str(tmp_path)
