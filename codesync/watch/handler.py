"""Watchdog event handler and the loop-side dispatcher that feeds the queue."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from watchdog.events import FileSystemEvent, FileSystemEventHandler

from codesync.ingest.exclusions import IgnoreRules, is_ignore_file, normalize_rel, should_index
from codesync.ingest.pipeline import Indexer
from codesync.logger import ContextLogger, describe_error, get_logger

from .events import EventKind, FileEvent
from .queue import ChangeQueue

logger = ContextLogger(get_logger(__name__))


class IndexHandler(FileSystemEventHandler):
    """Translates watchdog callbacks into FileEvents.

    Runs on the observer thread; it only filters and forwards. `emit` must be
    thread-safe (the watcher wraps it in loop.call_soon_threadsafe).
    """

    def __init__(
        self,
        root: Path,
        rules: Callable[[], IgnoreRules],
        emit: Callable[[FileEvent], None],
    ):
        super().__init__()
        self.root = root
        self._rules = rules
        self._emit = emit

    def _relative(self, src_path) -> Optional[str]:
        path = os.fsdecode(src_path)
        try:
            rel = os.path.relpath(path, self.root)
        except ValueError:
            return None
        if rel == "." or rel == ".." or rel.startswith(".." + os.sep):
            return None
        return normalize_rel(rel)

    def _forward(self, kind: EventKind, src_path, is_dir: bool = False) -> None:
        rel = self._relative(src_path)
        if not rel:
            return
        if not is_dir and is_ignore_file(rel):
            self._emit(FileEvent(EventKind.IGNORE_RULES_CHANGED, rel, self.root / rel))
            return
        if self._rules().ignores(rel, is_dir=is_dir):
            return
        self._emit(FileEvent(kind, rel, self.root / rel, is_dir=is_dir))

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(EventKind.ADDED, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(EventKind.MODIFIED, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._forward(EventKind.REMOVED, event.src_path, is_dir=event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._forward(EventKind.REMOVED, event.src_path, is_dir=event.is_directory)
        if not event.is_directory:
            self._forward(EventKind.ADDED, event.dest_path)


def _signature(full: Path) -> Optional[Tuple[int, int]]:
    try:
        st = full.stat()
    except OSError:
        return None
    return st.st_size, st.st_mtime_ns


async def wait_until_stable(full: Path, threshold: float, poll_interval: float) -> None:
    """Return once size and mtime have not changed for `threshold` seconds."""
    if threshold <= 0:
        return
    loop = asyncio.get_running_loop()
    last = await asyncio.to_thread(_signature, full)
    stable_since = loop.time()
    while loop.time() - stable_since < threshold:
        await asyncio.sleep(poll_interval)
        current = await asyncio.to_thread(_signature, full)
        if current != last:
            last = current
            stable_since = loop.time()


class EventDispatcher:
    """Loop-side half of the event wiring: settle, then enqueue.

    ADDED/MODIFIED and ignore-rule changes wait for the write-stability window;
    a newer event for the same path replaces the pending wait. REMOVED goes
    straight to the queue after cancelling any pending wait for that path, so
    a create followed by a delete always ends with the path absent.

    A settled rule change enqueues at most one rebuild: while one is still
    waiting in the queue further changes fold into it. Enqueueing it abandons
    the other pending file waits, since the rebuild rescans those files.
    """

    def __init__(
        self,
        indexer: Indexer,
        queue: ChangeQueue,
        *,
        stability_threshold: float = 0.2,
        poll_interval: float = 0.05,
    ):
        self.indexer = indexer
        self.queue = queue
        self.stability_threshold = stability_threshold
        self.poll_interval = poll_interval
        self._pending: Dict[str, asyncio.Task] = {}
        self._closed = False
        self._rebuild_queued = False
        queue.on_overflow("rebuild", lambda: self._rebuild_task("overflow"))

    @property
    def pending(self) -> int:
        return len(self._pending)

    def dispatch(self, event: FileEvent) -> None:
        if self._closed:
            return
        if event.kind is EventKind.REMOVED:
            if event.is_dir:
                for rel in [p for p in self._pending if p.startswith(event.rel + "/")]:
                    self._cancel_pending(rel)
                self.queue.enqueue(f"delete-tree:{event.rel}", self._delete_tree_task(event.rel))
                return
            self._cancel_pending(event.rel)
            self.queue.enqueue(f"delete:{event.rel}", self._delete_task(event.rel))
            return
        if event.kind is not EventKind.IGNORE_RULES_CHANGED and not should_index(event.rel):
            return
        self._cancel_pending(event.rel)
        self._pending[event.rel] = asyncio.get_running_loop().create_task(self._settle(event))

    def _cancel_pending(self, rel: str) -> None:
        task = self._pending.pop(rel, None)
        if task is not None:
            task.cancel()

    async def _settle(self, event: FileEvent) -> None:
        me = asyncio.current_task()
        try:
            await wait_until_stable(event.full, self.stability_threshold, self.poll_interval)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # The queued task re-reads the file and handles whatever state it is in
            logger.warning(
                "Stability wait failed", event="error", file=event.rel, detail=describe_error(exc)
            )
        finally:
            if self._pending.get(event.rel) is me:
                del self._pending[event.rel]
        if event.kind is EventKind.IGNORE_RULES_CHANGED:
            self._enqueue_rebuild()
            return
        self.queue.enqueue(f"{event.kind.value}:{event.rel}", self._reindex_task(event))

    def _enqueue_rebuild(self) -> None:
        for rel in [p for p in self._pending if not is_ignore_file(p)]:
            self._cancel_pending(rel)
        if self._rebuild_queued:
            logger.debug("Rebuild already queued", event="index", phase="ignore-refresh")
            return
        self._rebuild_queued = self.queue.enqueue("rebuild", self._rebuild_task())

    def _reindex_task(self, event: FileEvent):
        async def run() -> None:
            count = await self.indexer.reindex_file(event.rel, event.full)
            logger.info("Indexed file", event="file", action=event.kind.value, file=event.rel, chunks=count)

        return run

    def _delete_task(self, rel: str):
        async def run() -> None:
            await self.indexer.delete_file(rel)
            logger.info("Deleted file", event="file", action="delete", file=rel)

        return run

    def _delete_tree_task(self, rel_dir: str):
        async def run() -> None:
            removed = await self.indexer.delete_tree(rel_dir)
            logger.info("Deleted directory", event="file", action="delete", file=rel_dir + "/", files=removed)

        return run

    def _rebuild_task(self, phase: str = "ignore-refresh"):
        async def run() -> None:
            # Rule changes from here on need a fresh rebuild
            self._rebuild_queued = False
            await self.indexer.reload_rules()
            summary = await self.indexer.rebuild()
            logger.info("Index rebuilt", event="index", phase=phase, **summary.as_dict())

        return run

    def close(self) -> None:
        """Stop accepting events and abandon writes that have not settled."""
        self._closed = True
        for rel in list(self._pending):
            self._cancel_pending(rel)


__all__ = ["EventDispatcher", "IndexHandler", "wait_until_stable"]
