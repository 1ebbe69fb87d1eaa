"""Index management commands: index, status."""
from __future__ import annotations

import argparse
import sys
from dataclasses import asdict

from cli.core import build_runtime, load_config, output_json, run_async
from codesync.ingest.pipeline import IndexSummary
from codesync.logger import ContextLogger, get_logger

logger = ContextLogger(get_logger("codesync.cli"))


def cmd_index(args: argparse.Namespace) -> None:
    """Rebuild the index for the repository root once and print the summary.

    Individual file failures are logged and counted but do not change the exit
    status; only configuration or collection setup errors do.
    """
    config = load_config(args)
    print(f"Indexing {config.root} → collection={config.collection}", file=sys.stderr)

    async def run() -> IndexSummary:
        runtime = build_runtime(config)
        try:
            return await runtime.indexer.rebuild()
        finally:
            await runtime.aclose()

    summary = run_async(run())
    logger.info("Index complete", event="index", phase="complete", **summary.as_dict())
    output_json({"ok": True, "collection": config.collection, "root": str(config.root), **summary.as_dict()})


def cmd_status(args: argparse.Namespace) -> None:
    """Collection stats plus the recent write operations of this process."""
    config = load_config(args)

    async def run() -> dict:
        runtime = build_runtime(config)
        try:
            stats = await runtime.store.stats()
            recent = [asdict(op) for op in runtime.store.recent_operations(args.limit)]
            return {"qdrantUrl": config.qdrant_url, **stats.as_dict(), "recentOperations": recent}
        finally:
            await runtime.aclose()

    output_json({"ok": True, **run_async(run())})
