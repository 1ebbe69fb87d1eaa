"""Typed filesystem events consumed by the change queue."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class EventKind(str, Enum):
    ADDED = "add"
    MODIFIED = "change"
    REMOVED = "delete"
    IGNORE_RULES_CHANGED = "ignore-refresh"


@dataclass(frozen=True)
class FileEvent:
    kind: EventKind
    rel: str
    full: Path
    is_dir: bool = False


__all__ = ["EventKind", "FileEvent"]
