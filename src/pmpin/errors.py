"""Exception taxonomy for the broker.

Everything deriving from ``UsageError`` is reported to the user as a plain
message; other ``PmpinError`` subclasses indicate a failed download, a failed
integrity check, or a broken internal invariant.
"""

from __future__ import annotations

from .constants import ExitCodes


class PmpinError(Exception):
    """Base class for errors raised by the broker."""

    exit_code = ExitCodes.USAGE_ERROR


class UsageError(PmpinError):
    """User-facing error; printed without a traceback."""


class InvalidSpec(UsageError):
    """Malformed ``name@range`` descriptor."""


class UnsupportedPackageManager(UsageError):
    """Package manager name outside the supported set."""


class UnsafeCustomUrl(UsageError):
    """URL range for a well-known package manager without explicit opt-in."""


class TagsNotAllowed(UsageError):
    """A tag was used where a version or range is required."""


class NoMatchingVersion(UsageError):
    """Resolution found no candidate for the requested range."""


class NetworkDisabled(UsageError):
    """Network access was refused by configuration."""

    exit_code = ExitCodes.CONNECTION_ERROR


class HttpError(PmpinError):
    """Transport failure or non-2xx answer from a remote server."""

    exit_code = ExitCodes.CONNECTION_ERROR


class IntegrityMismatch(PmpinError):
    """Downloaded artifact does not match its expected digest or signature."""

    exit_code = ExitCodes.INTEGRITY_ERROR


class AssertionFailure(PmpinError):
    """An internal invariant was violated."""

    def __init__(self, message: str):
        super().__init__(f"Assertion failed: {message}")
