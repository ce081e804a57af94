"""Background task execution for the interactive event loop.

Blocking disk work runs on worker threads; workers report back to the
loop through typed messages on a single queue. Tasks sharing an
aggregate key run one at a time in the order they were submitted.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Union

import structlog

from pluqqy.errors import Busy, Cancelled

logger = structlog.get_logger()

ProgressCallback = Callable[[str, int, int], None]

TAGS_KEY = "tags"
CHECK_KEY = "check"


def component_key(path: str, archived: bool = False) -> str:
    return f"component:{'archive/' if archived else ''}{path}"


def pipeline_key(path: str, archived: bool = False) -> str:
    return f"pipeline:{'archive/' if archived else ''}{path}"


class CancelToken:
    """Cooperative cancellation flag, checked by workers between files."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, operation: str) -> None:
        if self._event.is_set():
            raise Cancelled(operation)


@dataclass(frozen=True)
class Started:
    key: str
    operation: str


@dataclass(frozen=True)
class Progress:
    key: str
    operation: str
    done: int
    total: int
    current: str = ""


@dataclass(frozen=True)
class Completed:
    key: str
    operation: str
    result: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


TaskMessage = Union[Started, Progress, Completed]


class TaskRunner:
    """Runs blocking callables off the loop with per-aggregate FIFO ordering."""

    def __init__(self) -> None:
        self.messages: asyncio.Queue[TaskMessage] = asyncio.Queue()
        self._locks: dict[str, asyncio.Lock] = {}
        self._pending: dict[str, int] = {}
        self._tasks: set[asyncio.Task] = set()

    def is_busy(self, key: str) -> bool:
        return self._pending.get(key, 0) > 0

    def ensure_idle(self, key: str) -> None:
        """Raise Busy if an operation on ``key`` is queued or running."""
        if self.is_busy(key):
            raise Busy(f"an operation on {key.split(':', 1)[-1]} is still in progress")

    def submit(
        self,
        key: str,
        operation: str,
        fn: Callable[..., Any],
        *args: Any,
        with_progress: bool = False,
        **kwargs: Any,
    ) -> asyncio.Task:
        """Schedule ``fn`` on a worker thread.

        With ``with_progress`` the callable receives a ``progress`` keyword
        argument that posts Progress messages back to the loop.
        """
        self._pending[key] = self._pending.get(key, 0) + 1
        task = asyncio.get_running_loop().create_task(
            self._run(key, operation, fn, args, kwargs, with_progress)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(
        self,
        key: str,
        operation: str,
        fn: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        with_progress: bool,
    ) -> Completed:
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            loop = asyncio.get_running_loop()
            self.messages.put_nowait(Started(key, operation))

            if with_progress:

                def report(current: str, done: int, total: int) -> None:
                    loop.call_soon_threadsafe(
                        self.messages.put_nowait, Progress(key, operation, done, total, current)
                    )

                kwargs = {**kwargs, "progress": report}

            try:
                result = await asyncio.to_thread(fn, *args, **kwargs)
                message = Completed(key, operation, result=result)
            except Exception as e:
                logger.warning("task.failed", key=key, operation=operation, error=str(e))
                message = Completed(key, operation, error=e)
            finally:
                self._pending[key] -= 1
                if not self._pending[key]:
                    del self._pending[key]
            self.messages.put_nowait(message)
            return message

    async def next_message(self) -> TaskMessage:
        return await self.messages.get()

    async def drain(self) -> None:
        """Wait for every submitted task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
