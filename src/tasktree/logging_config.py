"""Logging setup for tasktree.

Hierarchy code logs with ``extra={"node_id": ..., "scope": ...}``; both
formats below surface that context:

- **dev** (default): one readable line, context appended as ``key=value``.
- **json**: one JSON object per line, context as top-level keys.

Call :func:`setup_logging` once at the entry point; modules use
``logging.getLogger(__name__)``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

DEV_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DEV_DATEFMT = "%H:%M:%S"

# Record attributes rendered as context when present.
CONTEXT_KEYS = ("node_id", "scope", "task_id", "project_id")

_QUIET_LOGGERS = ("uvicorn.access", "aiosqlite")

TASKTREE_LOG = Path.home() / ".tasktree" / "tasktree.log"


class DevFormatter(logging.Formatter):
    """Human-readable lines with board context appended."""

    def __init__(self) -> None:
        super().__init__(DEV_FORMAT, datefmt=DEV_DATEFMT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = [
            f"{key}={getattr(record, key)}" for key in CONTEXT_KEYS if hasattr(record, key)
        ]
        return f"{line} ({' '.join(context)})" if context else line


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Standard keys are timestamp, level, logger and message; every
    non-builtin record attribute (the ``extra`` mapping) is copied alongside.
    """

    _BUILTIN_ATTRS = frozenset(
        logging.LogRecord("", 0, "", 0, "", (), None).__dict__
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, value) for key, value in record.__dict__.items()
            if key not in self._BUILTIN_ATTRS and not key.startswith("_")
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _resolve_level(level: int | str | None, warn: bool) -> int:
    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    resolved = getattr(logging, level.upper(), None)
    if isinstance(resolved, int):
        return resolved
    if warn:
        print(f"WARNING: Invalid LOG_LEVEL '{level}', falling back to INFO", file=sys.stderr)
    return logging.INFO


def _make_formatter(fmt: str | None) -> logging.Formatter:
    fmt = fmt or os.environ.get("LOG_FORMAT", "dev")
    return JSONFormatter() if fmt == "json" else DevFormatter()


def _install(handler: logging.Handler, level: int) -> None:
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging(fmt: str | None = None, level: int | str | None = None) -> None:
    """Send logs to stderr.

    Parameters
    ----------
    fmt:
        ``"dev"`` or ``"json"``; defaults to ``LOG_FORMAT`` or ``"dev"``.
    level:
        Level name or number; defaults to ``LOG_LEVEL`` or ``INFO``.  An
        unknown name prints a warning and falls back to ``INFO``.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_make_formatter(fmt))
    _install(handler, _resolve_level(level, warn=True))


def setup_file_logging(
    log_file: Path | None = None,
    level: int | str | None = None,
    fmt: str | None = None,
) -> None:
    """Send logs to a rotating file (10 MB x 3) instead of stderr.

    Used by ``tasktree serve --log-file``.
    """
    log_file = log_file or TASKTREE_LOG
    log_file.parent.mkdir(parents=True, exist_ok=True)
    resolved = _resolve_level(level, warn=False)

    handler = RotatingFileHandler(
        log_file, maxBytes=10 * 1024 * 1024, backupCount=3, encoding="utf-8",
    )
    handler.setFormatter(_make_formatter(fmt))
    handler.setLevel(resolved)
    _install(handler, resolved)
