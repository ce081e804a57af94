"""Tests for path containment and editor argument checks."""

from __future__ import annotations

import pytest

from pluqqy.errors import UnsafePath, ValidationError
from pluqqy.tui import app
from pluqqy.tui.app import launch_editor
from pluqqy.utils.security import (
    editor_argv,
    ensure_safe_argument,
    validate_reference,
    validate_relative_path,
)


@pytest.fixture
def no_subprocess(monkeypatch):
    calls = []
    monkeypatch.setattr(app.subprocess, "run", lambda *args, **kwargs: calls.append(args))
    return calls


class TestRelativePaths:
    def test_accepts_tree_paths(self):
        assert validate_relative_path("components/prompts/./a.md") == "components/prompts/a.md"

    @pytest.mark.parametrize(
        "path",
        ["/etc/passwd", "C:\\Windows\\x.md", "../outside.md", "components/../../x.md", "a\\..\\..\\b"],
    )
    def test_rejects_escapes(self, path):
        with pytest.raises(UnsafePath):
            validate_relative_path(path)

    def test_rejects_empty(self):
        with pytest.raises(ValidationError):
            validate_relative_path("  ")

    def test_reference_form(self):
        assert validate_reference("../components/rules/a.md") == "../components/rules/a.md"
        with pytest.raises(UnsafePath):
            validate_reference("../../components/rules/a.md")
        with pytest.raises(UnsafePath):
            validate_reference("../pipelines/a.yaml")


class TestEditorCommand:
    def test_splits_arguments(self):
        assert editor_argv("  true --wait ") == ["true", "--wait"]

    @pytest.mark.parametrize("command", ["vim; rm -rf /", "nano $(whoami)", "code | tee", "vi `id`"])
    def test_rejects_shell_syntax(self, command):
        with pytest.raises(UnsafePath):
            editor_argv(command)

    def test_empty_command(self):
        with pytest.raises(ValidationError, match="no editor configured"):
            editor_argv("   ")

    def test_missing_binary(self):
        with pytest.raises(ValidationError, match="not found on PATH"):
            editor_argv("no-such-editor-binary-here")

    def test_safe_argument(self):
        assert ensure_safe_argument("/tmp/project/a b.md") == "/tmp/project/a b.md"
        with pytest.raises(UnsafePath):
            ensure_safe_argument("/tmp/x;rm -rf ~")


class TestLaunchEditor:
    def test_runs_without_shell(self, no_subprocess, monkeypatch):
        ran = []

        class Done:
            returncode = 0

        def fake_run(argv, **kwargs):
            ran.append((argv, kwargs))
            return Done()

        monkeypatch.setattr(app.subprocess, "run", fake_run)
        assert launch_editor("true", "/tmp/project/a.md") == 0
        assert ran == [(["true", "/tmp/project/a.md"], {"check": False})]

    @pytest.mark.parametrize("location", ["/tmp/$(reboot).md", "/tmp/a.md; rm -rf /", "/tmp/`id`.md"])
    def test_refuses_unsafe_location(self, no_subprocess, location):
        with pytest.raises(UnsafePath):
            launch_editor("true", location)
        assert no_subprocess == []

    def test_refuses_unsafe_command(self, no_subprocess):
        with pytest.raises(UnsafePath):
            launch_editor("true && reboot", "/tmp/a.md")
        assert no_subprocess == []
