"""Embedding backends.

Two interchangeable variants sit behind EmbeddingBackend and are selected once
at startup by create_embedder():

    fastembed: local ONNX model via fastembed; one call embeds a whole batch.
    ollama:    remote Ollama server; one HTTP round-trip per text.

Both fail the whole call with EmbeddingError when the backend is unreachable or
answers with anything other than a numeric vector per input.
"""

from __future__ import annotations

import asyncio
import numbers
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

import httpx

from codesync.config import IndexerConfig
from codesync.logger import ConfigurationError, EmbeddingError, get_logger

logger = get_logger(__name__)

DIMENSION_PROBE = "dimension probe"


def _as_vector(raw: Any, source: str) -> List[float]:
    if not isinstance(raw, (list, tuple)):
        raise EmbeddingError(f"{source} response missing embedding array")
    if not raw:
        raise EmbeddingError(f"{source} returned an empty embedding")
    vector: List[float] = []
    for value in raw:
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise EmbeddingError(f"{source} returned a non-numeric embedding value")
        vector.append(float(value))
    return vector


class EmbeddingBackend(ABC):
    """Text to vector service with lazy, cached dimension discovery."""

    name: str = "base"

    def __init__(self) -> None:
        self._dimension: Optional[int] = None
        self._probe_lock = asyncio.Lock()

    @abstractmethod
    async def _embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        """Backend-specific call; must return one raw vector per text."""

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed texts, preserving order. Fails the whole batch on any error."""
        items = list(texts)
        if not items:
            return []
        vectors = await self._embed_many(items)
        if len(vectors) != len(items):
            raise EmbeddingError(
                f"{self.name} returned {len(vectors)} vectors for {len(items)} inputs"
            )
        width = len(vectors[0])
        if any(len(v) != width for v in vectors):
            raise EmbeddingError(f"{self.name} returned vectors of inconsistent length")
        if self._dimension is None:
            self._dimension = width
        elif width != self._dimension:
            raise EmbeddingError(
                f"{self.name} vector length changed from {self._dimension} to {width}"
            )
        return vectors

    async def embed(self, text: str) -> List[float]:
        return (await self.embed_batch([text]))[0]

    @property
    def known_dimension(self) -> Optional[int]:
        """None until the first successful embedding."""
        return self._dimension

    async def dimension(self) -> int:
        if self._dimension is not None:
            return self._dimension
        async with self._probe_lock:
            if self._dimension is None:
                await self.embed(DIMENSION_PROBE)
        if not self._dimension:
            raise EmbeddingError("Unable to determine embedding dimension.")
        return self._dimension

    async def aclose(self) -> None:
        return None


class FastEmbedBackend(EmbeddingBackend):
    """Batched local embeddings. Inference runs off the event loop."""

    name = "fastembed"

    def __init__(self, model_name: str, model: Any = None) -> None:
        super().__init__()
        self.model_name = model_name
        self._model = model
        self._load_lock = asyncio.Lock()

    def _load(self) -> Any:
        from fastembed import TextEmbedding

        logger.info("Loading embedding model %s", self.model_name)
        return TextEmbedding(model_name=self.model_name)

    async def _get_model(self) -> Any:
        if self._model is not None:
            return self._model
        async with self._load_lock:
            if self._model is None:
                try:
                    self._model = await asyncio.to_thread(self._load)
                except (OSError, ValueError, RuntimeError) as exc:
                    raise EmbeddingError(
                        f"fastembed model {self.model_name} unavailable: {exc}"
                    ) from exc
        return self._model

    async def _embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        model = await self._get_model()

        def run() -> List[Any]:
            return [vec.tolist() for vec in model.embed(list(texts))]

        try:
            raw = await asyncio.to_thread(run)
        except (OSError, ValueError, RuntimeError) as exc:
            raise EmbeddingError(f"fastembed embedding failed: {exc}") from exc
        return [_as_vector(v, self.name) for v in raw]


class OllamaBackend(EmbeddingBackend):
    """Serial remote embeddings: one POST /api/embeddings per text."""

    name = "ollama"

    def __init__(
        self,
        model: str,
        base_url: str,
        *,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__()
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url, timeout=httpx.Timeout(timeout, connect=5.0)
        )

    async def _embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        results: List[List[float]] = []
        for text in texts:
            results.append(await self._embed_one(text))
        return results

    async def _embed_one(self, text: str) -> List[float]:
        try:
            response = await self._client.post(
                "/api/embeddings", json={"model": self.model, "prompt": text}
            )
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"Ollama unreachable at {self.base_url}: {exc}") from exc
        if response.status_code >= 400:
            raise EmbeddingError(
                f"Ollama embedding failed: {response.status_code} {response.text}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise EmbeddingError("Ollama response is not JSON") from exc
        if not isinstance(body, dict):
            raise EmbeddingError("Ollama response missing embedding array")
        return _as_vector(body.get("embedding"), "Ollama")

    async def aclose(self) -> None:
        await self._client.aclose()


def create_embedder(config: IndexerConfig) -> EmbeddingBackend:
    """Pick the backend once, from configuration."""
    if config.embed_backend == "ollama":
        return OllamaBackend(
            config.ollama_model, config.ollama_base_url, timeout=config.ollama_timeout
        )
    if config.embed_backend == "fastembed":
        return FastEmbedBackend(config.embed_model)
    raise ConfigurationError(f"unknown embedding backend {config.embed_backend!r}")


__all__ = [
    "DIMENSION_PROBE",
    "EmbeddingBackend",
    "FastEmbedBackend",
    "OllamaBackend",
    "create_embedder",
]
