"""Component editor state: content, cursor, file-reference picking and exit confirmation.

The editor holds text in memory only; saving is done by whoever owns the
store, after which :meth:`ComponentEditor.mark_saved` resets the dirty flag.
"""

from __future__ import annotations

import re
from collections import deque
from enum import Enum

from pluqqy.db.models import ComponentKind
from pluqqy.errors import ValidationError
from pluqqy.tui.confirmation import Dialog
from pluqqy.utils.security import validate_relative_path

UNDO_LIMIT = 10

REFERENCE_PATTERN = re.compile(r"(?<!\\)@([A-Za-z0-9_./-]+)")


class EditorMode(str, Enum):
    IDLE = "idle"
    EDITING = "editing"
    FILE_PICKING = "file_picking"
    EXIT_CONFIRM = "exit_confirm"


def extract_file_references(text: str) -> list[str]:
    """``@path`` tokens in ``text``; ``\\@`` is a literal at sign."""
    return [m.rstrip(".") for m in REFERENCE_PATTERN.findall(text)]


class ComponentEditor:
    def __init__(self) -> None:
        self.mode = EditorMode.IDLE
        self._reset()

    def _reset(self) -> None:
        self.path: str | None = None
        self.name = ""
        self.kind: ComponentKind | None = None
        self.tags: list[str] = []
        self.content = ""
        self.original_content = ""
        self.cursor = 0
        self.insertion_point = 0
        self._undo: deque[str] = deque(maxlen=UNDO_LIMIT)

    @property
    def dirty(self) -> bool:
        return self.content != self.original_content

    @property
    def word_count(self) -> int:
        return len(self.content.split())

    def _require(self, *modes: EditorMode) -> None:
        if self.mode not in modes:
            raise ValidationError(f"editor is {self.mode.value}")

    def start_editing(
        self,
        path: str,
        name: str,
        kind: ComponentKind | str,
        content: str,
        tags: list[str] | None = None,
    ) -> None:
        self._reset()
        self.path = path
        self.name = name
        self.kind = ComponentKind.parse(kind)
        self.tags = list(tags or [])
        self.content = self.original_content = content
        self.cursor = len(content)
        self.mode = EditorMode.EDITING

    def set_content(self, content: str) -> None:
        self._require(EditorMode.EDITING, EditorMode.FILE_PICKING)
        if content != self.content:
            self._undo.append(self.content)
            self.content = content
        self.cursor = min(self.cursor, len(content))

    def set_cursor(self, position: int) -> None:
        self.cursor = max(0, min(position, len(self.content)))

    def insert_text(self, text: str) -> None:
        """Insert at the cursor and move the cursor past the inserted text."""
        position = self.cursor
        self.set_content(self.content[:position] + text + self.content[position:])
        self.cursor = position + len(text)

    def undo(self) -> bool:
        self._require(EditorMode.EDITING)
        if not self._undo:
            return False
        self.content = self._undo.pop()
        self.cursor = min(self.cursor, len(self.content))
        return True

    # --- file references ---

    def start_file_picker(self) -> None:
        self._require(EditorMode.EDITING)
        self.insertion_point = self.cursor
        self.mode = EditorMode.FILE_PICKING

    def confirm_file_pick(self, path: str) -> str:
        """Insert ``@<path>`` at the captured insertion point; returns the token.

        An unescaped ``@`` right before the insertion point is taken as the
        trigger and replaced by the token.
        """
        self._require(EditorMode.FILE_PICKING)
        token = "@" + validate_relative_path(path)
        start = end = min(self.insertion_point, len(self.content))
        if start > 0 and self.content[start - 1] == "@" and (start < 2 or self.content[start - 2] != "\\"):
            start -= 1
        self.mode = EditorMode.EDITING
        self.set_content(self.content[:start] + token + self.content[end:])
        self.cursor = start + len(token)
        return token

    def cancel_file_picker(self) -> None:
        self._require(EditorMode.FILE_PICKING)
        self.mode = EditorMode.EDITING

    def file_references(self) -> list[str]:
        return extract_file_references(self.content)

    # --- leaving the editor ---

    def request_exit(self) -> Dialog | None:
        """Leave directly when clean; otherwise enter exit confirmation."""
        self._require(EditorMode.EDITING)
        if not self.dirty:
            self._reset()
            self.mode = EditorMode.IDLE
            return None
        self.mode = EditorMode.EXIT_CONFIRM
        return Dialog(
            title="Unsaved Changes",
            message=f"'{self.name}' has unsaved changes.",
            warning="Exit without saving? Your changes will be lost.",
            destructive=True,
        )

    def confirm_exit(self) -> None:
        self._require(EditorMode.EXIT_CONFIRM)
        self._reset()
        self.mode = EditorMode.IDLE

    def cancel_exit(self) -> None:
        self._require(EditorMode.EXIT_CONFIRM)
        self.mode = EditorMode.EDITING

    def mark_saved(self) -> None:
        self.original_content = self.content
