"""Structured logging utility for codesync.

Provides JSON-formatted logging with context and the exception taxonomy used
across the indexing pipeline.
"""
from __future__ import annotations

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Cache loggers to avoid repeated lookups
_logger_cache: Dict[str, logging.Logger] = {}


def configure_logging(level: str = "INFO") -> int:
    """Configure the root logger once at startup.

    Returns the numeric level that was applied.
    """
    numeric = getattr(logging, str(level).upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    logging.getLogger("codesync").setLevel(numeric)
    return numeric


class JSONFormatter(logging.Formatter):
    """Format log records as JSON for structured logging."""

    __slots__ = ()

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info and record.exc_info[0] is not None:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        extra = getattr(record, "extra_fields", None)
        if extra:
            log_data.update(extra)

        return json.dumps(log_data, default=str)


def get_logger(name: str, json_format: bool = False) -> logging.Logger:
    """Get a logger instance with optional JSON formatting.

    Args:
        name: Logger name (typically __name__)
        json_format: If True, use JSON formatter; otherwise use default

    Returns:
        Configured logger instance
    """
    cache_key = f"{name}:{json_format}"
    if cache_key in _logger_cache:
        return _logger_cache[cache_key]

    logger = logging.getLogger(name)

    if json_format and not any(isinstance(h.formatter, JSONFormatter) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
        logger.propagate = False

    _logger_cache[cache_key] = logger
    return logger


class ContextLogger:
    """Logger wrapper that adds context fields to all log messages."""

    __slots__ = ("logger", "context")

    def __init__(self, logger: logging.Logger, **context):
        self.logger = logger
        self.context = context

    def bind(self, **context) -> "ContextLogger":
        return ContextLogger(self.logger, **{**self.context, **context})

    def _log(self, level: int, msg: str, exc_info: Any = None, **extra):
        """Internal log method that merges context."""
        if not self.logger.isEnabledFor(level):
            return
        merged = {**self.context, **extra} if extra else self.context
        if merged:
            fields = " ".join(f"{k}={v}" for k, v in merged.items())
            text = f"{msg} [{fields}]"
        else:
            text = msg
        record = self.logger.makeRecord(
            self.logger.name,
            level,
            "(unknown file)",
            0,
            text,
            (),
            exc_info,
        )
        record.extra_fields = merged
        self.logger.handle(record)

    def debug(self, msg: str, **extra):
        self._log(logging.DEBUG, msg, **extra)

    def info(self, msg: str, **extra):
        self._log(logging.INFO, msg, **extra)

    def warning(self, msg: str, **extra):
        self._log(logging.WARNING, msg, **extra)

    def error(self, msg: str, exc_info: Any = None, **extra):
        self._log(logging.ERROR, msg, exc_info=exc_info, **extra)

    def exception(self, msg: str, **extra):
        """Log an exception with traceback."""
        self._log(logging.ERROR, msg, exc_info=sys.exc_info(), **extra)

    def isEnabledFor(self, level: int) -> bool:
        return self.logger.isEnabledFor(level)


# Exceptions
class CodesyncError(Exception):
    """Base exception for all codesync errors."""
    pass


class ConfigurationError(CodesyncError):
    """Invalid chunk parameters or missing/invalid settings. Fatal at startup."""
    pass


class ScanError(CodesyncError):
    """A file could not be read or vanished while it was being indexed."""

    def __init__(self, message: str, *, file_path: Optional[str] = None):
        super().__init__(message)
        self.file_path = file_path


class EmbeddingError(CodesyncError):
    """The embedding backend is unreachable or returned a malformed response."""
    pass


class StoreError(CodesyncError):
    """A non-success response from the index store."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        batch_offset: Optional[int] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.batch_offset = batch_offset


def describe_error(exc: BaseException) -> str:
    """One-line description used in structured error logs."""
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__
