"""Error taxonomy shared by the store, engines, task runner and CLI."""

from __future__ import annotations

from pathlib import Path


class PluqqyError(Exception):
    """Base class for every error the application reports to the user."""


class ValidationError(PluqqyError, ValueError):
    """Input rejected before any side effect took place."""


class NotFound(PluqqyError, LookupError):
    """A referenced component, pipeline or tag does not exist."""


class Malformed(PluqqyError):
    """A file exists but could not be parsed."""

    def __init__(self, path: str | Path, reason: str) -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"{self.path}: {reason}")


class IOFailure(PluqqyError):
    """A disk operation failed; carries the operation and the path."""

    def __init__(self, operation: str, path: str | Path, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.path = str(path)
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"failed to {operation} {self.path}{detail}")


class PartialPropagation(PluqqyError):
    """A primary change succeeded but some dependent files were not updated."""

    def __init__(self, message: str, succeeded: list[str], failed: list[str]) -> None:
        self.succeeded = list(succeeded)
        self.failed = list(failed)
        super().__init__(message)


class Cancelled(PluqqyError):
    """A cancellable operation was stopped by the user."""


class UnsafePath(PluqqyError):
    """A path escapes the project tree or an argument carries shell metacharacters."""


class Busy(PluqqyError):
    """A mutation was requested on an aggregate with an operation in flight."""


def status_message(error: BaseException) -> str:
    """Render an error as a one-line status for the list view and CLI."""
    if isinstance(error, PartialPropagation):
        failed = ", ".join(error.failed) or "none"
        return f"× {error} (not updated: {failed})"
    if isinstance(error, Cancelled):
        return f"Cancelled: {error}" if str(error) else "Cancelled"
    return f"× {error}"
