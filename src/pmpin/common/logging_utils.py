"""Logging helpers shared across the broker.

Provides one-time logging configuration plus small utilities for structured
DEBUG traces: ``extra_context`` builds the ``extra=`` payload, ``safe_url``
strips credentials before a URL reaches a log line, and ``Timer`` measures
durations.
"""
from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ..constants import Constants

_SENSITIVE_QUERY_KEYS = {"token", "access_token", "auth", "password", "key", "secret"}
_REDACTED = "[REDACTED]"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once for CLI use.

    Level priority: explicit argument, PMPIN_LOG_LEVEL, DEBUG when PMPIN_DEBUG
    is set, then WARNING so that the launched package manager owns the terminal.
    """
    if level is None:
        level = os.environ.get(Constants.ENV_LOG_LEVEL)
    if level is None and os.environ.get(Constants.ENV_DEBUG):
        level = "DEBUG"
    level_value = getattr(logging, str(level or "WARNING").upper(), logging.WARNING)

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(Constants.LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level_value)


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True if DEBUG records would be emitted by logger."""
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra=`` mapping, dropping empty values."""
    return {key: value for key, value in fields.items() if value is not None}


def redact(value: Optional[str]) -> str:
    """Hide a secret while keeping a hint of its presence."""
    if not value:
        return ""
    return _REDACTED


def safe_url(url: str) -> str:
    """Remove userinfo and sensitive query parameters from a URL."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    netloc = parts.netloc
    if "@" in netloc:
        netloc = f"{_REDACTED}@{netloc.rsplit('@', 1)[1]}"
    query = parts.query
    if query:
        pairs = [
            (key, _REDACTED if key.lower() in _SENSITIVE_QUERY_KEYS else value)
            for key, value in parse_qsl(query, keep_blank_values=True)
        ]
        query = urlencode(pairs, safe="[]")
    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


class Timer:
    """Context manager measuring elapsed wall time."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> int:
        end = self._end if self._end is not None else time.perf_counter()
        return int((end - self._start) * 1000)
