"""Core building blocks for watch mode.

Modules:
    events: typed filesystem events
    queue: single-consumer FIFO change queue
    handler: watchdog event handler and loop-side dispatcher
    watcher: observer lifecycle and WatcherHandle
"""

from . import events, queue, handler, watcher

__all__ = [
    "events",
    "queue",
    "handler",
    "watcher",
]
