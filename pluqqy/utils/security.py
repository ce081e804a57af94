"""Security utilities: path containment and safe external-process arguments."""

from __future__ import annotations

import posixpath
import re
import shutil

from pluqqy.errors import UnsafePath, ValidationError

# Characters a shell would interpret; never allowed in an editor command or file argument.
SHELL_METACHARACTERS = re.compile(r"[;&|`$<>(){}\[\]*?!~\\'\"\n\r\t]")

# The only sanctioned form of a reference from a pipeline to a component.
REFERENCE_PATTERN = re.compile(r"^\.\./components/(contexts|prompts|rules)/[^/]+\.md$")

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB


def clean_path(path: str) -> str:
    """Normalize a forward-slash relative path."""
    return posixpath.normpath(path.replace("\\", "/"))


def validate_relative_path(path: str) -> str:
    """Return the cleaned path, or raise UnsafePath if it is absolute or walks upward."""
    if not path or not path.strip():
        raise ValidationError("path must not be empty")
    if path.startswith("/") or re.match(r"^[A-Za-z]:[\\/]", path):
        raise UnsafePath(f"absolute paths are not allowed: {path}")
    if ".." in path.replace("\\", "/").split("/"):
        raise UnsafePath(f"path escapes the project tree: {path}")
    cleaned = clean_path(path)
    if cleaned == "." or cleaned.startswith("../"):
        raise UnsafePath(f"path escapes the project tree: {path}")
    return cleaned


def validate_reference(ref: str) -> str:
    """Validate a pipeline-to-component reference and return it cleaned.

    References are the one place a leading ``..`` is expected: they are
    relative to the pipelines directory and must land in the components tree.
    """
    normalized = ref.replace("\\", "/")
    if not REFERENCE_PATTERN.match(normalized) or normalized.count("..") != 1:
        raise UnsafePath(f"invalid component reference: {ref}")
    return normalized


def ensure_safe_argument(value: str) -> str:
    """Reject a value that carries shell metacharacters."""
    if SHELL_METACHARACTERS.search(value):
        raise UnsafePath(f"unsafe characters in argument: {value!r}")
    return value


def editor_argv(command: str) -> list[str]:
    """Split an editor command into argv, validating every token.

    The command is never handed to a shell, so splitting is plain whitespace.
    """
    command = command.strip()
    if not command:
        raise ValidationError("no editor configured; set $EDITOR or editor.command in settings.yaml")
    argv = [ensure_safe_argument(part) for part in command.split()]
    if shutil.which(argv[0]) is None:
        raise ValidationError(f"editor not found on PATH: {argv[0]}")
    return argv
