"""
Ingest package - scanning, chunking and indexing.

- exclusions: ignore rules, tree walk, extension and size filters
- chunking: line-based overlapping windows
- qdrant: content identity and the IndexStore adapter
- pipeline: Indexer (reindex_file, delete_file, rebuild)

Usage:
    from codesync.ingest.pipeline import Indexer
    from codesync.ingest.qdrant import IndexStore, document_id
"""
from codesync.ingest import exclusions
from codesync.ingest import chunking
from codesync.ingest import qdrant
from codesync.ingest import pipeline

__all__ = [
    "exclusions",
    "chunking",
    "qdrant",
    "pipeline",
]
