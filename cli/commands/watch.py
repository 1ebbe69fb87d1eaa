"""Watch command: auto-reindex on file changes (daemon mode)."""
from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from cli.core import build_runtime, load_config, run_async
from codesync.watch.watcher import start_watcher


def cmd_watch(args: argparse.Namespace) -> None:
    """Initial rebuild, then keep the index in sync until SIGINT/SIGTERM."""
    config = load_config(args)
    print(f"Watching {config.root} → collection={config.collection}", file=sys.stderr)
    run_async(_watch(config))


async def _watch(config) -> None:
    runtime = build_runtime(config)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops: KeyboardInterrupt still ends the run
            pass
    try:
        handle = await start_watcher(config, runtime.indexer)
        try:
            await stop.wait()
        finally:
            await handle.close()
    finally:
        await runtime.aclose()
