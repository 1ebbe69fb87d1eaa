import hashlib
import sys
from pathlib import Path
from typing import List, Sequence

import pytest
import pytest_asyncio

# Ensure repository root is on sys.path so `import codesync...` works locally
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from qdrant_client import AsyncQdrantClient  # noqa: E402

from codesync.config import IndexerConfig  # noqa: E402
from codesync.embedder import EmbeddingBackend  # noqa: E402
from codesync.ingest.qdrant import IndexStore  # noqa: E402
from codesync.logger import EmbeddingError  # noqa: E402

FAKE_DIM = 8


class FakeEmbedder(EmbeddingBackend):
    """Deterministic hash vectors. Any text containing `fail_marker` fails the batch."""

    name = "fake"

    def __init__(self, dim: int = FAKE_DIM, fail_marker: str | None = None):
        super().__init__()
        self.dim = dim
        self.fail_marker = fail_marker
        self.calls: List[List[str]] = []

    async def _embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.fail_marker and any(self.fail_marker in t for t in texts):
            raise EmbeddingError("fake backend refused the batch")
        vectors = []
        for text in texts:
            digest = hashlib.sha256(text.encode("utf-8")).digest()
            vectors.append([b / 255.0 + 0.01 for b in digest[: self.dim]])
        return vectors


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def make_config(tmp_path):
    """Build a small-chunk config rooted at tmp_path; keyword overrides win."""

    def _make(**overrides) -> IndexerConfig:
        base = dict(
            root=tmp_path,
            chunk_lines=4,
            chunk_overlap=1,
            collection="test_codebase",
            qdrant_url=":memory:",
            stability_ms=0,
            poll_ms=10,
        )
        base.update(overrides)
        return IndexerConfig(**base)

    return _make


@pytest_asyncio.fixture
async def store():
    client = AsyncQdrantClient(location=":memory:")
    store = IndexStore(client, "test_codebase", "code")
    try:
        yield store
    finally:
        await store.close()


@pytest.fixture
def stored_documents():
    """Return every stored payload keyed by document id."""

    async def _fetch(store: IndexStore) -> dict:
        docs = {}
        offset = None
        while True:
            points, offset = await store.client.scroll(
                collection_name=store.collection,
                limit=256,
                offset=offset,
                with_payload=True,
                with_vectors=False,
            )
            for point in points:
                docs[point.payload["id"]] = point.payload
            if offset is None:
                return docs

    return _fetch
