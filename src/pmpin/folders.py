"""Cache folder helpers."""

from __future__ import annotations

import errno
import os
import shutil
import tempfile

from .constants import Constants
from .errors import UsageError


def get_temporary_folder(target: str) -> str:
    """Create a fresh staging directory inside target.

    The directory lives next to the final install location so that moving it
    into place is a same-volume rename.

    Raises:
        UsageError: If target is not writable.
    """
    try:
        os.makedirs(target, exist_ok=True)
        return tempfile.mkdtemp(prefix=f"{Constants.TEMP_PREFIX}-{os.getpid()}-", dir=target)
    except PermissionError as exc:
        raise UsageError(
            "Failed to create cache directory. Please ensure the user has write access "
            f"to the target directory ({target}). If the user's home directory does not "
            "exist, create it first."
        ) from exc


def remove_tree(path: str) -> None:
    """Remove a directory tree, ignoring it if already gone."""
    try:
        shutil.rmtree(path)
    except OSError as exc:
        if exc.errno != errno.ENOENT:
            raise
