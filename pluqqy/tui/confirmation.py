"""Confirmation prompts: one type for inline and dialog confirmations, one interpreter."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from rich.console import RenderableType
from rich.panel import Panel
from rich.text import Text

CONFIRM_KEYS = {"y", "Y"}
CANCEL_KEYS = {"n", "N", "esc", "escape"}


@dataclass(frozen=True)
class Inline:
    message: str
    destructive: bool = False


@dataclass(frozen=True)
class Dialog:
    title: str
    message: str
    warning: str = ""
    destructive: bool = False


Confirmation = Union[Inline, Dialog]


class Answer(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    PENDING = "pending"


class ConfirmationPrompt:
    """Holds at most one pending confirmation and resolves it from a key press."""

    def __init__(self) -> None:
        self.active: Confirmation | None = None
        self._on_confirm: Callable[[], Any] | None = None
        self._on_cancel: Callable[[], Any] | None = None

    @property
    def is_active(self) -> bool:
        return self.active is not None

    def show(
        self,
        confirmation: Confirmation,
        on_confirm: Callable[[], Any],
        on_cancel: Callable[[], Any] | None = None,
    ) -> None:
        self.active = confirmation
        self._on_confirm = on_confirm
        self._on_cancel = on_cancel

    def handle_key(self, key: str) -> Answer:
        if self.active is None:
            return Answer.PENDING
        if key in CONFIRM_KEYS:
            callback, answer = self._on_confirm, Answer.CONFIRMED
        elif key.strip() in CANCEL_KEYS or key == "\x1b":
            callback, answer = self._on_cancel, Answer.CANCELLED
        else:
            return Answer.PENDING
        self.active = None
        self._on_confirm = self._on_cancel = None
        if callback is not None:
            callback()
        return answer

    def render(self) -> RenderableType:
        confirmation = self.active
        if confirmation is None:
            return Text("")
        style = "bold red" if confirmation.destructive else "bold yellow"
        if isinstance(confirmation, Inline):
            return Text(f"{confirmation.message} (y/n)", style=style)
        body = Text(confirmation.message)
        if confirmation.warning:
            body.append("\n\n")
            body.append(confirmation.warning, style=style)
        return Panel(
            body,
            title=confirmation.title,
            border_style="red" if confirmation.destructive else "yellow",
            subtitle="[y] confirm  [n] cancel",
        )
