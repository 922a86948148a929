"""Tests for workspace containment."""

import os

import pytest

from agentic_gate.shell import path_analyzer
from agentic_gate.shell.models import PathEffect, PathOperation
from agentic_gate.shell.path_analyzer import PathAnalyzer, expand_candidate, is_within_workspace


def write(path: str) -> PathEffect:
    return PathEffect(path=path, operation=PathOperation.WRITE, position=0)


def read(path: str) -> PathEffect:
    return PathEffect(path=path, operation=PathOperation.READ, position=0)


class TestContainment:
    """Tests for is_within_workspace."""

    @pytest.mark.parametrize("path", [".", "out.txt", "src/app.py", "./build/", "src/../docs"])
    def test_inside(self, workspace, path):
        assert is_within_workspace(path, workspace, workspace)

    @pytest.mark.parametrize("path", ["..", "../other", "/etc/hosts", "src/../../x"])
    def test_outside(self, workspace, path):
        assert not is_within_workspace(path, workspace, workspace)

    def test_absolute_path_inside(self, workspace):
        assert is_within_workspace(str(workspace / "a.txt"), workspace, workspace)

    def test_shared_prefix_is_not_containment(self, workspace):
        sibling = str(workspace) + "-secrets"

        assert not is_within_workspace(os.path.join(sibling, "key"), workspace, workspace)

    def test_relative_to_cwd(self, workspace):
        subdir = workspace / "src"
        subdir.mkdir()

        assert is_within_workspace("../README.md", workspace, subdir)
        assert not is_within_workspace("../../README.md", workspace, subdir)

    def test_symlink_escape(self, workspace, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (workspace / "link").symlink_to(outside)

        assert not is_within_workspace("link/file.txt", workspace, workspace)

    def test_unresolvable_variable_is_outside(self, workspace, monkeypatch):
        monkeypatch.delenv("GATE_TEST_UNSET", raising=False)

        assert not is_within_workspace("$GATE_TEST_UNSET/x", workspace, workspace)

    def test_windows_drive_path_on_posix(self, workspace):
        if os.name == "nt":
            pytest.skip("POSIX only")

        assert not is_within_workspace("C:\\Windows\\x", workspace, workspace)

    def test_expand_candidate(self, monkeypatch):
        monkeypatch.setenv("GATE_TEST_DIR", "/srv/data")

        assert expand_candidate("$GATE_TEST_DIR/x") == "/srv/data/x"
        assert expand_candidate("$(pwd)/x") is None


class TestPathAnalyzer:
    """Tests for violations produced by the analyzer."""

    def test_write_outside_is_promptable(self, workspace):
        analyzer = PathAnalyzer(workspace)

        violations = analyzer.validate_paths([write("../escape.txt")], workspace)

        assert len(violations) == 1
        assert not violations[0].is_hard
        assert violations[0].message == "Write to path outside workspace: ../escape.txt"

    def test_reads_are_never_violations(self, workspace):
        analyzer = PathAnalyzer(workspace)

        assert analyzer.validate_paths([read("/etc/hosts"), read("../x")], workspace) == []

    def test_writes_inside_are_fine(self, workspace):
        analyzer = PathAnalyzer(workspace)

        assert analyzer.validate_paths([write("out.txt"), write("build/app")], workspace) == []

    def test_sensitive_write_inside_workspace_is_promptable(self, workspace, monkeypatch):
        monkeypatch.setattr(path_analyzer, "SENSITIVE_PATHS", [workspace / ".ssh"])
        analyzer = PathAnalyzer(workspace)

        violations = analyzer.validate_paths([write(".ssh/config")], workspace)

        assert [v.message for v in violations] == ["Write to sensitive path: .ssh/config"]
        assert not violations[0].is_hard

    def test_duplicate_writes_reported_once(self, workspace):
        analyzer = PathAnalyzer(workspace)

        violations = analyzer.validate_paths([write("/tmp/x"), write("/tmp/x")], workspace)

        assert len(violations) == 1

    def test_cwd_inside(self, workspace):
        assert PathAnalyzer(workspace).validate_cwd(workspace) is None

    def test_cwd_outside(self, workspace, tmp_path):
        violation = PathAnalyzer(workspace).validate_cwd(tmp_path)

        assert violation is not None
        assert violation.message == f"Working directory outside workspace: {tmp_path}"
        assert not violation.is_hard
