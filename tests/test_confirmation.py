"""Tests for the confirmation prompt."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from pluqqy.tui.confirmation import Answer, ConfirmationPrompt, Dialog, Inline


def rendered(prompt: ConfirmationPrompt) -> str:
    console = Console(width=80, record=True, color_system=None)
    console.print(prompt.render())
    return console.export_text()


class TestConfirmationPrompt:
    def test_confirm_runs_callback(self):
        calls: list[str] = []
        prompt = ConfirmationPrompt()
        prompt.show(Inline("Delete foo?", destructive=True), lambda: calls.append("yes"), lambda: calls.append("no"))
        assert prompt.is_active
        assert prompt.handle_key("Y") == Answer.CONFIRMED
        assert calls == ["yes"]
        assert not prompt.is_active

    def test_cancel_keys(self):
        for key in ("n", "N", "esc", "\x1b"):
            calls: list[str] = []
            prompt = ConfirmationPrompt()
            prompt.show(Inline("Archive?"), lambda: calls.append("yes"), lambda: calls.append("no"))
            assert prompt.handle_key(key) == Answer.CANCELLED
            assert calls == ["no"]

    def test_other_keys_keep_it_pending(self):
        prompt = ConfirmationPrompt()
        prompt.show(Inline("Archive?"), lambda: None)
        assert prompt.handle_key("x") == Answer.PENDING
        assert prompt.is_active

    def test_no_active_prompt(self):
        assert ConfirmationPrompt().handle_key("y") == Answer.PENDING

    def test_render_inline(self):
        prompt = ConfirmationPrompt()
        prompt.show(Inline("Delete foo?"), lambda: None)
        assert isinstance(prompt.render(), Text)
        assert "Delete foo? (y/n)" in rendered(prompt)

    def test_render_dialog(self):
        prompt = ConfirmationPrompt()
        prompt.show(Dialog("Unsaved Changes", "Pipeline 'p' changed.", "Exit without saving?", True), lambda: None)
        assert isinstance(prompt.render(), Panel)
        text = rendered(prompt)
        assert "Unsaved Changes" in text
        assert "Exit without saving?" in text
