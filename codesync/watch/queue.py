"""Single-consumer FIFO change queue used by the watcher."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from codesync.logger import ContextLogger, describe_error, get_logger

logger = ContextLogger(get_logger(__name__))

TaskFn = Callable[[], Awaitable[None]]

DEFAULT_MAX_PENDING = 1024


class QueueState(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    PROCESSING = "processing"


@dataclass(frozen=True)
class QueuedTask:
    name: str
    run: TaskFn


class ChangeQueue:
    """Runs queued tasks strictly one at a time, in enqueue order.

    A failing task is logged and dropped; the worker moves on to the next
    one. Nothing is retried.

    The queue holds at most `maxsize` pending tasks. The notifier cannot be
    back-pressured, so on overflow every pending task is replaced by the
    single task registered with on_overflow() (a full rebuild, which
    subsumes them). Without one, the new task is dropped.
    """

    def __init__(self, maxsize: int = DEFAULT_MAX_PENDING) -> None:
        self._queue: asyncio.Queue[Optional[QueuedTask]] = asyncio.Queue(maxsize=maxsize)
        self._overflow: Optional[Callable[[], QueuedTask]] = None
        self._worker: Optional[asyncio.Task] = None
        self._closing = False
        self._current: Optional[str] = None
        self.completed = 0
        self.failed = 0
        self.overflows = 0

    @property
    def state(self) -> QueueState:
        if self._current is not None:
            return QueueState.PROCESSING
        if self._queue.qsize():
            return QueueState.QUEUED
        return QueueState.IDLE

    @property
    def closed(self) -> bool:
        return self._closing

    def on_overflow(self, name: str, factory: Callable[[], TaskFn]) -> None:
        self._overflow = lambda: QueuedTask(name, factory())

    def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.get_running_loop().create_task(
                self._run(), name="codesync-change-queue"
            )

    def enqueue(self, name: str, run: TaskFn) -> bool:
        """Append a task. Returns False once the queue is closing or the task was dropped."""
        if self._closing:
            logger.debug("Dropping task after close", task=name)
            return False
        try:
            self._queue.put_nowait(QueuedTask(name, run))
            return True
        except asyncio.QueueFull:
            pass
        self.overflows += 1
        if self._overflow is None:
            logger.warning("Change queue full, dropping task", event="error", task=name)
            return False
        dropped = self._drain_pending()
        replacement = self._overflow()
        self._queue.put_nowait(replacement)
        logger.warning(
            "Change queue full, collapsing pending tasks",
            event="index",
            dropped=dropped + 1,
            task=replacement.name,
        )
        return True

    def _drain_pending(self) -> int:
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            self._queue.task_done()
            dropped += 1

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                self._current = item.name
                try:
                    await item.run()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self.failed += 1
                    logger.exception(
                        "Queued task failed", event="error", task=item.name, detail=describe_error(exc)
                    )
                else:
                    self.completed += 1
                finally:
                    self._current = None
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every task enqueued so far has finished."""
        await self._queue.join()

    async def close(self) -> None:
        """Stop intake, let queued and in-flight tasks finish, stop the worker."""
        if self._closing:
            if self._worker is not None:
                await self._worker
            return
        self._closing = True
        # Never started: drain what was queued before stopping
        self.start()
        await self._queue.put(None)
        await self._worker


__all__ = ["ChangeQueue", "DEFAULT_MAX_PENDING", "QueueState", "QueuedTask", "TaskFn"]
