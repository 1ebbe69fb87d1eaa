#!/usr/bin/env python3
"""
ingest/pipeline.py - Core indexing pipeline.

Turns files into documents (read -> chunk -> embed -> id) and applies them to
the store, either one file at a time or as a full rebuild of the tree.
"""
from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Optional, Set

from codesync.config import IndexerConfig
from codesync.embedder import EmbeddingBackend
from codesync.ingest.chunking import chunk_lines
from codesync.ingest.exclusions import IgnoreRules, ScannedFile, should_index, walk, within_size_limit
from codesync.ingest.qdrant import Document, IndexStore, document_id, sha256_text
from codesync.logger import (
    ContextLogger,
    EmbeddingError,
    ScanError,
    StoreError,
    describe_error,
    get_logger,
)

logger = ContextLogger(get_logger(__name__))


@dataclass
class IndexSummary:
    files_indexed: int = 0
    chunks_indexed: int = 0
    files_failed: int = 0
    files_removed: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def _read_text(full: Path) -> str:
    with open(full, "r", encoding="utf-8", errors="replace", newline="") as fh:
        return fh.read()


class Indexer:
    """Applies files to the index. Callers serialize access (see ChangeQueue)."""

    def __init__(
        self,
        config: IndexerConfig,
        embedder: EmbeddingBackend,
        store: IndexStore,
        rules: Optional[IgnoreRules] = None,
    ):
        self.config = config
        self.embedder = embedder
        self.store = store
        self.root = config.root
        self.rules = rules if rules is not None else IgnoreRules.load(self.root)

    def full_path(self, rel: str) -> Path:
        return self.root / rel

    async def reload_rules(self) -> IgnoreRules:
        self.rules = await asyncio.to_thread(IgnoreRules.load, self.root)
        logger.info("Reloaded ignore rules", sources=",".join(self.rules.sources) or "-")
        return self.rules

    async def documents_for_file(self, rel: str, full: Path) -> List[Document]:
        try:
            content = await asyncio.to_thread(_read_text, full)
        except OSError as exc:
            raise ScanError(f"Failed to read {rel}: {exc}", file_path=rel) from exc
        chunks = list(chunk_lines(content, self.config.chunk_lines, self.config.chunk_overlap))
        vectors = await self.embedder.embed_batch([c.text for c in chunks])
        file_hash = sha256_text(content)
        return [
            Document(
                id=document_id(rel, chunk.start, chunk.end, file_hash),
                file_path=rel,
                start_line=chunk.start,
                end_line=chunk.end,
                content=chunk.text,
                vector=vector,
            )
            for chunk, vector in zip(chunks, vectors)
        ]

    async def _within_limit(self, full: Path) -> bool:
        return await asyncio.to_thread(within_size_limit, full, self.config.max_file_bytes)

    def is_eligible(self, rel: str) -> bool:
        """Current rules still admit the path and its extension is indexable."""
        return should_index(rel) and not self.rules.ignores(rel)

    async def reindex_file(self, rel: str, full: Optional[Path] = None) -> int:
        """Delete-then-insert for one file. Returns the number of chunks stored.

        Not transactional: between the delete and the insert the file's
        documents are absent. Oversized, vanished, unreadable or no longer
        eligible files end up with no documents at all.
        """
        full = full or self.full_path(rel)
        await self.store.delete_by_file_path(rel)
        if not self.is_eligible(rel):
            logger.debug("Skipping ineligible file", event="file", action="delete", file=rel)
            return 0
        try:
            if not await self._within_limit(full):
                return 0
            docs = await self.documents_for_file(rel, full)
        except ScanError as exc:
            logger.error("Failed to read file", event="error", file=rel, detail=describe_error(exc))
            return 0
        await self.store.add_documents(docs, self.config.batch_size)
        return len(docs)

    async def delete_file(self, rel: str) -> None:
        await self.store.delete_by_file_path(rel)

    async def delete_tree(self, rel_dir: str) -> int:
        """Drop every stored file under a removed or moved-away directory."""
        prefix = rel_dir.rstrip("/") + "/"
        stored = await self.store.indexed_file_paths()
        doomed = sorted(p for p in stored if p.startswith(prefix))
        for rel in doomed:
            await self.store.delete_by_file_path(rel)
        return len(doomed)

    async def _scan(self) -> List[ScannedFile]:
        return await asyncio.to_thread(lambda: list(walk(self.root, self.rules)))

    async def rebuild(self) -> IndexSummary:
        """Rescan the tree, reindex every eligible file and drop stale paths.

        Per-file failures are logged and counted; only a failure to prepare
        the collection aborts the rebuild.
        """
        dimension = await self.embedder.dimension()
        await self.store.ensure_index(dimension)

        summary = IndexSummary()
        seen: Set[str] = set()
        for scanned in await self._scan():
            if not should_index(scanned.rel):
                continue
            seen.add(scanned.rel)
            try:
                await self._rebuild_one(scanned, summary)
            except (ScanError, EmbeddingError, StoreError) as exc:
                summary.files_failed += 1
                logger.error(
                    "Failed to index file",
                    event="error",
                    file=scanned.rel,
                    detail=describe_error(exc),
                )
            except Exception as exc:
                summary.files_failed += 1
                logger.exception(
                    "Unexpected failure indexing file",
                    event="error",
                    file=scanned.rel,
                    detail=describe_error(exc),
                )

        await self._reconcile(seen, summary)
        return summary

    async def _rebuild_one(self, scanned: ScannedFile, summary: IndexSummary) -> None:
        if not await self._within_limit(scanned.full):
            if await self.store.count_for_path(scanned.rel):
                await self.store.delete_by_file_path(scanned.rel)
                summary.files_removed += 1
            return
        # Build first so a failing embedder leaves the previous documents in place
        docs = await self.documents_for_file(scanned.rel, scanned.full)
        await self.store.delete_by_file_path(scanned.rel)
        if docs:
            await self.store.add_documents(docs, self.config.batch_size)
            summary.files_indexed += 1
            summary.chunks_indexed += len(docs)

    async def _reconcile(self, seen: Set[str], summary: IndexSummary) -> None:
        """Delete documents whose file is gone, ignored or no longer eligible."""
        try:
            stored = await self.store.indexed_file_paths()
        except StoreError as exc:
            logger.error("Failed to list indexed files", event="error", detail=describe_error(exc))
            return
        for rel in sorted(stored - seen):
            try:
                await self.store.delete_by_file_path(rel)
            except StoreError as exc:
                logger.error(
                    "Failed to remove stale file", event="error", file=rel, detail=describe_error(exc)
                )
                continue
            summary.files_removed += 1
            logger.debug("Removed stale documents", event="file", action="delete", file=rel)


__all__ = ["IndexSummary", "Indexer"]
