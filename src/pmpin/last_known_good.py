"""Last-known-good store: ``{name: reference}`` persisted as JSON.

The record is an optimization shared by every broker process on the
machine. Readers tolerate a missing or corrupt file (it reads as empty) and
writers merge in place: parse the whole file, change one key, rewrite the
whole file, all through the same open handle. Concurrent writers from
other processes are last-writer-wins.
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from typing import Dict, IO, Iterator, Optional

from .constants import Constants

logger = logging.getLogger(__name__)


def _parse(content: str) -> Dict[str, str]:
    try:
        data = json.loads(content) if content.strip() else {}
    except ValueError:
        logger.debug("Ignoring corrupt %s", Constants.LAST_KNOWN_GOOD_FILE)
        return {}
    if not isinstance(data, dict):
        return {}
    return {key: value for key, value in data.items() if isinstance(value, str)}


class LastKnownGoodFile:
    """An open last-known-good document."""

    def __init__(self, handle: IO[str]):
        self._handle = handle
        self._handle.seek(0)
        self.entries = _parse(self._handle.read())

    def get(self, name: str) -> Optional[str]:
        return self.entries.get(name)

    def set(self, name: str, reference: str) -> None:
        """Record reference for name and rewrite the document."""
        entries = dict(self.entries)
        entries[name] = reference
        serialized = json.dumps(entries, indent=2) + "\n"
        self._handle.seek(0)
        self._handle.truncate()
        self._handle.write(serialized)
        self._handle.flush()
        self.entries = entries


class LastKnownGoodStore:
    """Access to ``<install root>/lastKnownGood.json``."""

    def __init__(self, install_root: str):
        self.install_root = install_root
        self.path = os.path.join(install_root, Constants.LAST_KNOWN_GOOD_FILE)

    @contextmanager
    def open(self) -> Iterator[LastKnownGoodFile]:
        """Open the document read-write, creating it if absent.

        The handle stays open for the whole ``with`` block so that a read
        followed by ``set`` is a single read-modify-write.
        """
        os.makedirs(self.install_root, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        with os.fdopen(fd, "r+", encoding="utf-8") as handle:
            yield LastKnownGoodFile(handle)
