"""Parsing of ``name@range`` package manager specifications."""

from __future__ import annotations

from typing import Any, Optional, Tuple

from .constants import Constants
from .errors import InvalidSpec, UnsafeCustomUrl, UnsupportedPackageManager
from .models import Descriptor, is_url
from .semver_utils import is_valid_version, is_version_or_range


def is_supported_package_manager(name: str) -> bool:
    return name in Constants.SUPPORTED_PACKAGE_MANAGERS


def tokenize_rightmost_at(raw: str) -> Tuple[str, Optional[str]]:
    """Return (name, range or None) using the rightmost-at rule.

    An ``@`` at position 0 belongs to a scoped name and a trailing ``@`` carries
    no range, so neither splits the string.
    """
    at_index = raw.rfind("@")
    if at_index <= 0:
        return raw, None
    if at_index == len(raw) - 1:
        return raw[:-1], None
    return raw[:at_index], raw[at_index + 1:]


def parse_spec(
    raw: Any,
    source: str,
    enforce_exact_version: bool = True,
    allow_unsafe_urls: bool = False,
) -> Descriptor:
    """Parse a raw package manager specification into a Descriptor.

    Args:
        raw: The raw value, usually the ``packageManager`` manifest field.
        source: Where the value came from, for error messages.
        enforce_exact_version: Require ``name@x.y.z`` (or a URL).
        allow_unsafe_urls: Accept URLs for well-known package manager names.

    Returns:
        Descriptor for the specification.

    Raises:
        InvalidSpec: Malformed value.
        UnsupportedPackageManager: Name outside the supported set.
        UnsafeCustomUrl: URL for a well-known name without opt-in.
    """
    if not isinstance(raw, str):
        raise InvalidSpec(f"Invalid package manager specification in {source}; expected a string")

    name, range_ = tokenize_rightmost_at(raw.strip())

    if range_ is None:
        if enforce_exact_version:
            raise InvalidSpec(
                f"No version specified for {name} in \"packageManager\" of {source}"
            )
        if not is_supported_package_manager(name):
            raise UnsupportedPackageManager(f"Unsupported package manager specification ({raw})")
        return Descriptor(name=name, range="*")

    if is_url(range_):
        if is_supported_package_manager(name) and not allow_unsafe_urls:
            raise UnsafeCustomUrl(
                "Illegal use of URL for known package manager. Instead, select a specific version, "
                f"or set {Constants.ENV_ENABLE_UNSAFE_CUSTOM_URLS}=1 in your environment ({raw})"
            )
        return Descriptor(name=name, range=range_)

    if enforce_exact_version and not is_valid_version(range_):
        raise InvalidSpec(
            f"Invalid package manager specification in {source} ({raw}); expected a semver version"
        )

    if not is_supported_package_manager(name):
        raise UnsupportedPackageManager(f"Unsupported package manager specification ({raw})")

    return Descriptor(name=name, range=range_)


def is_tag(range_: str) -> bool:
    """A range that is neither a version, a semver range nor a URL is a tag."""
    return not is_version_or_range(range_) and not is_url(range_)
