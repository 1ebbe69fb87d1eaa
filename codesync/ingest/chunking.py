#!/usr/bin/env python3
"""
ingest/chunking.py - Line-based chunking.

Splits a file's text into overlapping, deterministic line windows. Line
numbers are 1-indexed and inclusive.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, List

from codesync.logger import ConfigurationError

_LINE_BREAK = re.compile(r"\r?\n")


@dataclass(frozen=True)
class Chunk:
    start: int
    end: int
    text: str


def split_lines(text: str) -> List[str]:
    """Split on LF or CRLF; a trailing newline leaves a final empty line."""
    return _LINE_BREAK.split(text)


def chunk_lines(text: str, max_lines: int = 150, overlap: int = 30) -> Iterator[Chunk]:
    """Chunk text into overlapping line-based windows.

    The parameters are checked eagerly, so a bad configuration fails here and
    not on first iteration. Empty text yields a single chunk (1, 1, "").
    """
    if max_lines < 1:
        raise ConfigurationError("chunk length must be at least one line")
    if overlap < 0:
        raise ConfigurationError("chunk overlap must not be negative")
    if overlap >= max_lines:
        raise ConfigurationError("chunk overlap must be smaller than chunk length")
    return _windows(split_lines(text), max_lines, overlap)


def _windows(lines: List[str], max_lines: int, overlap: int) -> Iterator[Chunk]:
    n = len(lines)
    i = 0
    while i < n:
        j = min(n, i + max_lines)
        yield Chunk(start=i + 1, end=j, text="\n".join(lines[i:j]))
        if j == n:
            return
        # overlap < max_lines keeps j - overlap > i
        i = j - overlap


__all__ = ["Chunk", "chunk_lines", "split_lines"]
