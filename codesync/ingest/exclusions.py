#!/usr/bin/env python3
"""
ingest/exclusions.py - File discovery and exclusion logic.

This module provides the IgnoreRules matcher, the explicit-stack tree walk and
the extension / size filters that decide which files are eligible for indexing.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Sequence

import pathspec

from codesync.logger import ScanError, get_logger

logger = get_logger(__name__)

# Always applied first; user rule files cannot re-include these.
DEFAULT_IGNORES: tuple[str, ...] = (
    "node_modules",
    ".git",
    ".next",
    "dist",
    "build",
    ".meili-data",
    ".qdrant-data",
    "__pycache__",
    ".venv",
)

# Read from the root in this order; later lines win (including negations).
IGNORE_FILES: tuple[str, ...] = (".ragignore", ".gitignore")

CODE_EXTENSIONS: frozenset[str] = frozenset(
    {
        "ts", "tsx", "js", "jsx", "mjs", "cjs",
        "json", "md", "mdx", "yml", "yaml", "toml", "ini",
        "go", "rs", "py", "java", "kt", "c", "cc", "cpp", "cxx", "h", "hpp",
        "cs", "rb", "php", "sql", "sh", "ps1", "bat", "swift",
    }
)


def normalize_rel(path: str | os.PathLike) -> str:
    """Root-relative path with forward slashes and no leading './'."""
    rel = str(path).replace(os.sep, "/")
    while rel.startswith("./"):
        rel = rel[2:]
    return rel.strip("/")


class IgnoreRules:
    """Gitignore-style matcher: built-in defaults OR the user rule files."""

    def __init__(self, user_lines: Sequence[str] = (), sources: Sequence[str] = ()):
        self._defaults = pathspec.PathSpec.from_lines("gitwildmatch", DEFAULT_IGNORES)
        self._user = pathspec.PathSpec.from_lines("gitwildmatch", list(user_lines))
        self.sources: List[str] = list(sources)

    @classmethod
    def load(cls, root: Path) -> "IgnoreRules":
        """Read the rule files from root; a missing file is not an error."""
        lines: List[str] = []
        sources: List[str] = []
        for name in IGNORE_FILES:
            try:
                raw = (root / name).read_text(encoding="utf-8", errors="replace")
            except FileNotFoundError:
                continue
            lines.extend(raw.splitlines())
            sources.append(name)
        return cls(lines, sources)

    def ignores(self, rel: str, is_dir: bool = False) -> bool:
        rel = normalize_rel(rel)
        if not rel:
            return False
        candidate = rel + "/" if is_dir else rel
        if self._defaults.match_file(candidate):
            return True
        return self._user.match_file(candidate)


def is_ignore_file(rel: str) -> bool:
    """True for a recognized ignore-rule file at the repository root."""
    return normalize_rel(rel) in IGNORE_FILES


@dataclass(frozen=True)
class ScannedFile:
    rel: str
    full: Path


def walk(root: Path, rules: IgnoreRules) -> Iterator[ScannedFile]:
    """Yield every non-ignored, non-directory entry under root.

    Depth-first with an explicit stack so deep trees cannot exhaust the
    interpreter's recursion limit. Ignored directories are pruned before they
    are entered.
    """
    stack: List[str] = [""]
    while stack:
        rel_dir = stack.pop()
        full_dir = root / rel_dir if rel_dir else root
        try:
            with os.scandir(full_dir) as it:
                entries = sorted(it, key=lambda e: e.name)
        except (FileNotFoundError, NotADirectoryError, PermissionError) as exc:
            logger.warning("Skipping unreadable directory %s: %s", rel_dir or ".", exc)
            continue
        for entry in entries:
            rel = f"{rel_dir}/{entry.name}" if rel_dir else entry.name
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
            except OSError as exc:
                logger.warning("Skipping %s: %s", rel, exc)
                continue
            if rules.ignores(rel, is_dir=is_dir):
                continue
            if is_dir:
                stack.append(rel)
                continue
            yield ScannedFile(rel=rel, full=Path(entry.path))


def should_index(rel: str) -> bool:
    """Check if a file should be indexed by its extension."""
    name = normalize_rel(rel).rsplit("/", 1)[-1]
    if "." not in name:
        return False
    ext = name.rsplit(".", 1)[-1].lower()
    return bool(ext) and ext in CODE_EXTENSIONS


def within_size_limit(full: Path, max_bytes: int) -> bool:
    """False for files above the ceiling and for files that have vanished.

    Any other stat failure (permissions, symlink loops) raises ScanError.
    """
    try:
        return full.stat().st_size <= max_bytes
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise ScanError(f"Failed to stat {full}: {exc}") from exc


__all__ = [
    "CODE_EXTENSIONS",
    "DEFAULT_IGNORES",
    "IGNORE_FILES",
    "IgnoreRules",
    "ScannedFile",
    "is_ignore_file",
    "normalize_rel",
    "should_index",
    "walk",
    "within_size_limit",
]
