"""Shared helpers for CLI commands."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import dataclass
from typing import Any

from codesync.config import IndexerConfig
from codesync.embedder import EmbeddingBackend, create_embedder
from codesync.ingest.pipeline import Indexer
from codesync.ingest.qdrant import IndexStore
from codesync.logger import configure_logging


def load_config(args: argparse.Namespace) -> IndexerConfig:
    """Environment first, then command-line overrides. Validated once here."""
    config = IndexerConfig.from_env().with_overrides(
        root=getattr(args, "root", None),
        collection=getattr(args, "collection", None),
    )
    configure_logging("DEBUG" if getattr(args, "debug", False) else config.log_level)
    return config


@dataclass
class Runtime:
    config: IndexerConfig
    embedder: EmbeddingBackend
    store: IndexStore
    indexer: Indexer

    async def aclose(self) -> None:
        await self.embedder.aclose()
        await self.store.close()


def build_runtime(config: IndexerConfig) -> Runtime:
    embedder = create_embedder(config)
    store = IndexStore.from_config(config)
    indexer = Indexer(config, embedder, store)
    return Runtime(config=config, embedder=embedder, store=store, indexer=indexer)


def output_json(data: Any) -> None:
    """Write JSON to stdout, single place for all commands."""
    json.dump(data, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


def run_async(coro) -> Any:
    """Run an async coroutine from sync CLI context."""
    return asyncio.run(coro)
