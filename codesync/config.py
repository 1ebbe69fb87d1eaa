#!/usr/bin/env python3
"""
config.py - Environment-based configuration for the indexer.

The environment is read exactly once, by IndexerConfig.from_env(), at startup.
The resulting value is passed explicitly to every component; nothing below the
CLI reads os.environ.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional

from codesync.logger import ConfigurationError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
EMBED_BACKENDS = ("fastembed", "ollama")

DEFAULT_CHUNK_LINES = 150
DEFAULT_CHUNK_OVERLAP = 30
DEFAULT_MAX_FILE_BYTES = 2_000_000
DEFAULT_BATCH_SIZE = 64
DEFAULT_EMBED_MODEL = "BAAI/bge-small-en-v1.5"
DEFAULT_OLLAMA_MODEL = "nomic-embed-text"
DEFAULT_OLLAMA_URL = "http://127.0.0.1:11434"
DEFAULT_QDRANT_URL = "http://localhost:6333"
DEFAULT_COLLECTION = "codebase"
DEFAULT_VECTOR_NAME = "code"
DEFAULT_QUEUE_SIZE = 1024


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def _safe_int_env(env: Mapping[str, str], key: str, default: int) -> int:
    """Parse an integer from the environment; a malformed value is fatal."""
    val = env.get(key)
    if val is None or not val.strip():
        return default
    try:
        return int(val.strip().replace("_", ""))
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {val!r}") from None


def _safe_float_env(env: Mapping[str, str], key: str, default: float) -> float:
    val = env.get(key)
    if val is None or not val.strip():
        return default
    try:
        return float(val.strip())
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {val!r}") from None


def _env_truthy(val: str | None, default: bool) -> bool:
    """Check if environment value is truthy."""
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class IndexerConfig:
    """Everything the indexing core consumes, validated at the boundary."""

    root: Path = field(default_factory=lambda: Path(".").resolve())
    chunk_lines: int = DEFAULT_CHUNK_LINES
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES
    batch_size: int = DEFAULT_BATCH_SIZE

    embed_backend: str = "fastembed"
    embed_model: str = DEFAULT_EMBED_MODEL
    ollama_model: str = DEFAULT_OLLAMA_MODEL
    ollama_base_url: str = DEFAULT_OLLAMA_URL
    ollama_timeout: float = 60.0

    qdrant_url: str = DEFAULT_QDRANT_URL
    qdrant_api_key: Optional[str] = None
    qdrant_timeout: int = 20
    collection: str = DEFAULT_COLLECTION
    vector_name: str = DEFAULT_VECTOR_NAME

    # Write-stability quiet period for the watcher
    stability_ms: int = 200
    poll_ms: int = 50
    use_polling: bool = False
    queue_max_pending: int = DEFAULT_QUEUE_SIZE

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "IndexerConfig":
        env = os.environ if environ is None else environ
        cfg = cls(
            root=Path(env.get("REPO_ROOT", ".") or ".").expanduser().resolve(),
            chunk_lines=_safe_int_env(env, "RAG_CHUNK_LINES", DEFAULT_CHUNK_LINES),
            chunk_overlap=_safe_int_env(env, "RAG_CHUNK_OVERLAP", DEFAULT_CHUNK_OVERLAP),
            max_file_bytes=_safe_int_env(env, "RAG_MAX_FILE_BYTES", DEFAULT_MAX_FILE_BYTES),
            batch_size=_safe_int_env(env, "RAG_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            embed_backend=(env.get("RAG_EMBED_BACKEND") or "fastembed").strip().lower(),
            embed_model=env.get("RAG_EMBED_MODEL", DEFAULT_EMBED_MODEL),
            ollama_model=env.get("RAG_OLLAMA_MODEL", DEFAULT_OLLAMA_MODEL),
            ollama_base_url=env.get("OLLAMA_BASE_URL", DEFAULT_OLLAMA_URL).rstrip("/"),
            ollama_timeout=_safe_float_env(env, "OLLAMA_TIMEOUT", 60.0),
            qdrant_url=env.get("QDRANT_URL", DEFAULT_QDRANT_URL),
            qdrant_api_key=env.get("QDRANT_API_KEY") or None,
            qdrant_timeout=_safe_int_env(env, "QDRANT_TIMEOUT", 20),
            collection=env.get("COLLECTION_NAME", DEFAULT_COLLECTION),
            vector_name=env.get("RAG_VECTOR_NAME", DEFAULT_VECTOR_NAME),
            stability_ms=_safe_int_env(env, "WATCH_STABILITY_MS", 200),
            poll_ms=_safe_int_env(env, "WATCH_POLL_MS", 50),
            use_polling=_env_truthy(env.get("WATCH_USE_POLLING"), False),
            queue_max_pending=_safe_int_env(env, "WATCH_QUEUE_SIZE", DEFAULT_QUEUE_SIZE),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
        cfg.validate()
        return cfg

    def with_overrides(self, **overrides) -> "IndexerConfig":
        """Return a validated copy with the non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "root" in changes:
            changes["root"] = Path(changes["root"]).expanduser().resolve()
        cfg = replace(self, **changes)
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if self.chunk_lines < 1:
            raise ConfigurationError("chunk size must be at least one line")
        if self.chunk_overlap < 0:
            raise ConfigurationError("chunk overlap must not be negative")
        if self.chunk_overlap >= self.chunk_lines:
            raise ConfigurationError("chunk overlap must be smaller than chunk length")
        if self.max_file_bytes < 1:
            raise ConfigurationError("max file bytes must be positive")
        if self.batch_size < 1:
            raise ConfigurationError("upsert batch size must be positive")
        if self.embed_backend not in EMBED_BACKENDS:
            raise ConfigurationError(
                f"unknown embedding backend {self.embed_backend!r}; "
                f"expected one of {', '.join(EMBED_BACKENDS)}"
            )
        model = self.ollama_model if self.embed_backend == "ollama" else self.embed_model
        if not model or not model.strip():
            raise ConfigurationError(f"an embedding model is required for {self.embed_backend}")
        if not self.collection or not self.collection.strip():
            raise ConfigurationError("COLLECTION_NAME is required")
        if not self.vector_name or not self.vector_name.strip():
            raise ConfigurationError("RAG_VECTOR_NAME is required")
        if not self.qdrant_url:
            raise ConfigurationError("QDRANT_URL is required")
        if self.stability_ms < 0 or self.poll_ms < 1:
            raise ConfigurationError("watch stability/poll intervals are invalid")
        if self.queue_max_pending < 1:
            raise ConfigurationError("WATCH_QUEUE_SIZE must be positive")
        if not self.root.is_dir():
            raise ConfigurationError(f"repository root is not a directory: {self.root}")

    @property
    def stability_threshold(self) -> float:
        return self.stability_ms / 1000.0

    @property
    def poll_interval(self) -> float:
        return self.poll_ms / 1000.0


__all__ = ["IndexerConfig", "EMBED_BACKENDS"]
