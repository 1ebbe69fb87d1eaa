"""Watcher lifecycle: observer + dispatcher + change queue."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from codesync.config import IndexerConfig
from codesync.ingest.pipeline import Indexer, IndexSummary
from codesync.logger import ContextLogger, get_logger

from .handler import EventDispatcher, IndexHandler
from .queue import ChangeQueue

logger = ContextLogger(get_logger(__name__))


def create_observer(use_polling: bool) -> BaseObserver:
    """Create a watchdog observer based on configuration."""
    if use_polling:
        from watchdog.observers.polling import PollingObserver

        logger.info("Using polling observer for filesystem events")
        return PollingObserver()
    return Observer()


@dataclass
class WatcherHandle:
    observer: BaseObserver
    queue: ChangeQueue
    dispatcher: EventDispatcher
    summary: IndexSummary

    async def close(self) -> None:
        """Release the subscription, then let queued work finish."""
        self.observer.stop()
        await asyncio.to_thread(self.observer.join)
        self.dispatcher.close()
        await self.queue.close()
        logger.info("Watcher closed", completed=self.queue.completed, failed=self.queue.failed)


async def start_watcher(
    config: IndexerConfig,
    indexer: Indexer,
    *,
    observer: Optional[BaseObserver] = None,
) -> WatcherHandle:
    """Subscribe to the tree, run the initial rebuild, then start the queue.

    The observer starts before the rebuild so edits made while it runs are
    queued behind it instead of being lost. A failed initial rebuild is fatal.
    """
    loop = asyncio.get_running_loop()
    queue = ChangeQueue(maxsize=config.queue_max_pending)
    dispatcher = EventDispatcher(
        indexer,
        queue,
        stability_threshold=config.stability_threshold,
        poll_interval=config.poll_interval,
    )
    handler = IndexHandler(
        config.root,
        rules=lambda: indexer.rules,
        emit=lambda event: loop.call_soon_threadsafe(dispatcher.dispatch, event),
    )
    observer = observer or create_observer(config.use_polling)
    observer.schedule(handler, str(config.root), recursive=True)
    observer.start()
    try:
        summary = await indexer.rebuild()
    except BaseException:
        observer.stop()
        await asyncio.to_thread(observer.join)
        dispatcher.close()
        raise
    logger.info("Initial index complete", event="index", phase="initial", **summary.as_dict())
    queue.start()
    return WatcherHandle(observer=observer, queue=queue, dispatcher=dispatcher, summary=summary)


__all__ = ["WatcherHandle", "create_observer", "start_watcher"]
