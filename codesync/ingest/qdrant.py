#!/usr/bin/env python3
"""
ingest/qdrant.py - Content identity and Qdrant I/O operations.

This module derives the stable document ids and provides IndexStore, the
adapter that owns collection setup, batched upserts and filter-based deletes.
"""
from __future__ import annotations

import hashlib
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Sequence, Set

from qdrant_client import AsyncQdrantClient, models
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from codesync.logger import StoreError, get_logger

logger = get_logger(__name__)

FILE_PATH_FIELD = "filePath"
_RECENT_OPERATIONS = 50
_SCROLL_PAGE = 256


# ---------------------------------------------------------------------------
# Content identity
# ---------------------------------------------------------------------------
def sha256_text(text: str) -> str:
    # surrogateescape keeps undecodable filename bytes hashable
    return hashlib.sha256(text.encode("utf-8", errors="surrogateescape")).hexdigest()


def document_id(file_path: str, start: int, end: int, file_hash: str) -> str:
    """Stable id for one chunk of one version of a file."""
    return sha256_text(f"{file_path}:{start}:{end}:{file_hash}")


def point_id(doc_id: str) -> str:
    """Qdrant only accepts UUIDs or integers; fold the first 128 bits."""
    return str(uuid.UUID(hex=doc_id[:32]))


@dataclass(frozen=True)
class Document:
    id: str
    file_path: str
    start_line: int
    end_line: int
    content: str
    vector: List[float]

    def payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            FILE_PATH_FIELD: self.file_path,
            "startLine": self.start_line,
            "endLine": self.end_line,
            "content": self.content,
        }


@dataclass(frozen=True)
class OperationRecord:
    operation_id: Optional[int]
    kind: str
    status: str
    file_path: Optional[str]
    points: int
    finished_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class IndexStats:
    collection: str
    documents: int
    status: str
    optimizer_status: str
    indexed_vectors: int
    fields: List[str]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "collection": self.collection,
            "documents": self.documents,
            "status": self.status,
            "optimizerStatus": self.optimizer_status,
            "indexedVectors": self.indexed_vectors,
            "fields": self.fields,
        }


def _status_of(exc: Exception) -> Optional[int]:
    return getattr(exc, "status_code", None)


def _describe(exc: Exception) -> str:
    if isinstance(exc, UnexpectedResponse):
        body = exc.content.decode("utf-8", errors="replace") if exc.content else ""
        return f"{exc.status_code} {exc.reason_phrase} {body}".strip()
    return str(exc) or type(exc).__name__


class IndexStore:
    """Idempotent collection setup, batched upsert and filter delete."""

    def __init__(self, client: AsyncQdrantClient, collection: str, vector_name: str):
        self.client = client
        self.collection = collection
        self.vector_name = vector_name
        self._recent: Deque[OperationRecord] = deque(maxlen=_RECENT_OPERATIONS)

    @classmethod
    def from_config(cls, config) -> "IndexStore":
        client = AsyncQdrantClient(
            location=config.qdrant_url,
            api_key=config.qdrant_api_key,
            timeout=config.qdrant_timeout,
        )
        return cls(client, config.collection, config.vector_name)

    async def close(self) -> None:
        await self.client.close()

    # -- collection ---------------------------------------------------------
    async def ensure_index(self, dimension: int) -> None:
        """Create the collection if needed and configure the vector field."""
        if dimension < 1:
            raise StoreError(f"invalid vector dimension {dimension}")
        try:
            exists = await self.client.collection_exists(self.collection)
            if exists:
                info = await self.client.get_collection(self.collection)
                current = self._vector_size(info)
                if current != dimension:
                    logger.warning(
                        "Recreating collection %s: vector %r size %s -> %s",
                        self.collection, self.vector_name, current, dimension,
                    )
                    await self.client.delete_collection(self.collection)
                    exists = False
            if not exists:
                await self._create(dimension)
            await self.client.create_payload_index(
                collection_name=self.collection,
                field_name=FILE_PATH_FIELD,
                field_schema=models.PayloadSchemaType.KEYWORD,
                wait=True,
            )
        except (UnexpectedResponse, ResponseHandlingException) as exc:
            raise StoreError(
                f"Failed to configure collection {self.collection}: {_describe(exc)}",
                status_code=_status_of(exc),
            ) from exc

    async def _create(self, dimension: int) -> None:
        try:
            await self.client.create_collection(
                collection_name=self.collection,
                vectors_config={
                    self.vector_name: models.VectorParams(
                        size=dimension, distance=models.Distance.COSINE
                    )
                },
            )
            logger.info("Created collection %s (%s=%d)", self.collection, self.vector_name, dimension)
        except UnexpectedResponse as exc:
            # Lost a creation race with another caller
            if exc.status_code != 409:
                raise

    def _vector_size(self, info) -> Optional[int]:
        vectors = info.config.params.vectors
        if isinstance(vectors, dict):
            params = vectors.get(self.vector_name)
            return getattr(params, "size", None)
        return None

    # -- writes -------------------------------------------------------------
    async def add_documents(self, docs: Sequence[Document], batch_size: int) -> None:
        if not docs:
            return
        if batch_size < 1:
            raise StoreError(f"invalid batch size {batch_size}")
        for offset in range(0, len(docs), batch_size):
            batch = docs[offset : offset + batch_size]
            points = [
                models.PointStruct(
                    id=point_id(doc.id),
                    vector={self.vector_name: doc.vector},
                    payload=doc.payload(),
                )
                for doc in batch
            ]
            try:
                result = await self.client.upsert(
                    collection_name=self.collection, points=points, wait=True
                )
            except (UnexpectedResponse, ResponseHandlingException) as exc:
                self._record(None, "upsert", "failed", batch[0].file_path, len(batch))
                raise StoreError(
                    f"Failed to add documents at batch offset {offset}: {_describe(exc)}",
                    status_code=_status_of(exc),
                    batch_offset=offset,
                ) from exc
            self._record_result(result, "upsert", batch[0].file_path, len(batch))

    async def delete_by_file_path(self, file_path: str) -> None:
        selector = models.FilterSelector(
            filter=models.Filter(
                must=[
                    models.FieldCondition(
                        key=FILE_PATH_FIELD, match=models.MatchValue(value=file_path)
                    )
                ]
            )
        )
        try:
            result = await self.client.delete(
                collection_name=self.collection, points_selector=selector, wait=True
            )
        except UnexpectedResponse as exc:
            if exc.status_code == 404:
                return
            self._record(None, "delete", "failed", file_path, 0)
            raise StoreError(
                f"Failed to delete by file path {file_path}: {_describe(exc)}",
                status_code=exc.status_code,
            ) from exc
        except ResponseHandlingException as exc:
            self._record(None, "delete", "failed", file_path, 0)
            raise StoreError(
                f"Failed to delete by file path {file_path}: {_describe(exc)}"
            ) from exc
        self._record_result(result, "delete", file_path, 0)

    # -- reads --------------------------------------------------------------
    async def indexed_file_paths(self) -> Set[str]:
        """Every distinct filePath currently stored in the collection."""
        paths: Set[str] = set()
        offset = None
        try:
            while True:
                points, offset = await self.client.scroll(
                    collection_name=self.collection,
                    limit=_SCROLL_PAGE,
                    offset=offset,
                    with_payload=[FILE_PATH_FIELD],
                    with_vectors=False,
                )
                for point in points:
                    value = (point.payload or {}).get(FILE_PATH_FIELD)
                    if isinstance(value, str):
                        paths.add(value)
                if offset is None:
                    break
        except (UnexpectedResponse, ResponseHandlingException) as exc:
            raise StoreError(
                f"Failed to list indexed files: {_describe(exc)}",
                status_code=_status_of(exc),
            ) from exc
        return paths

    async def count_for_path(self, file_path: str) -> int:
        try:
            result = await self.client.count(
                collection_name=self.collection,
                count_filter=models.Filter(
                    must=[
                        models.FieldCondition(
                            key=FILE_PATH_FIELD, match=models.MatchValue(value=file_path)
                        )
                    ]
                ),
                exact=True,
            )
        except (UnexpectedResponse, ResponseHandlingException) as exc:
            raise StoreError(
                f"Failed to count documents for {file_path}: {_describe(exc)}",
                status_code=_status_of(exc),
            ) from exc
        return result.count

    async def stats(self) -> IndexStats:
        try:
            info = await self.client.get_collection(self.collection)
            count = await self.client.count(collection_name=self.collection, exact=True)
        except (UnexpectedResponse, ResponseHandlingException) as exc:
            raise StoreError(
                f"Failed to fetch collection stats: {_describe(exc)}",
                status_code=_status_of(exc),
            ) from exc
        optimizer = info.optimizer_status
        return IndexStats(
            collection=self.collection,
            documents=count.count,
            status=str(getattr(info.status, "value", info.status)),
            optimizer_status=str(getattr(optimizer, "value", optimizer)),
            indexed_vectors=info.indexed_vectors_count or 0,
            fields=sorted((info.payload_schema or {}).keys()),
        )

    def recent_operations(self, limit: int = 5) -> List[OperationRecord]:
        """Newest first. Only covers writes issued by this process."""
        if limit < 1:
            return []
        return list(reversed(self._recent))[:limit]

    def _record_result(self, result, kind: str, file_path: Optional[str], points: int) -> None:
        status = getattr(result, "status", None)
        self._record(
            getattr(result, "operation_id", None),
            kind,
            str(getattr(status, "value", status or "unknown")),
            file_path,
            points,
        )

    def _record(
        self,
        operation_id: Optional[int],
        kind: str,
        status: str,
        file_path: Optional[str],
        points: int,
    ) -> None:
        self._recent.append(
            OperationRecord(
                operation_id=operation_id,
                kind=kind,
                status=status,
                file_path=file_path,
                points=points,
            )
        )


__all__ = [
    "Document",
    "FILE_PATH_FIELD",
    "IndexStats",
    "IndexStore",
    "OperationRecord",
    "document_id",
    "point_id",
    "sha256_text",
]
