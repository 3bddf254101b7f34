"""npm-flavored semver helpers built on semantic_version."""

from __future__ import annotations

from functools import lru_cache
from typing import Iterable, Optional

import semantic_version


def strip_build(version: str) -> str:
    """Drop ``+build`` metadata, e.g. an integrity suffix."""
    return version.split("+", 1)[0]


def parse_version(value: str) -> Optional[semantic_version.Version]:
    """Parse a strict semver version, ignoring build metadata; None if invalid."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return semantic_version.Version(strip_build(value.strip()))
    except ValueError:
        return None


def is_valid_version(value: str) -> bool:
    """True for exact versions such as ``1.22.4`` or ``1.22.4+sha1.abcd``."""
    if not isinstance(value, str) or not value:
        return False
    try:
        semantic_version.Version(value.strip())
    except ValueError:
        return False
    return True


@lru_cache(maxsize=256)
def _npm_spec(value: str) -> Optional[semantic_version.NpmSpec]:
    try:
        return semantic_version.NpmSpec(value)
    except ValueError:
        return None


def is_valid_range(value: str) -> bool:
    """True for anything node-semver would accept as a range (``^1``, ``1.x``, ``*``)."""
    if not isinstance(value, str) or not value.strip():
        return False
    return _npm_spec(value.strip()) is not None


def is_version_or_range(value: str) -> bool:
    return is_valid_version(value) or is_valid_range(value)


def satisfies(version: str, range_: str, include_prerelease: bool = False) -> bool:
    """True if version matches range, following npm pre-release rules.

    With include_prerelease, a pre-release also matches when its release
    version does, so that ``4.0.0-rc.1`` belongs to ``>=2.0.0``.
    """
    parsed = parse_version(version)
    if parsed is None:
        return False
    if is_valid_version(range_):
        return parsed == parse_version(range_)
    spec = _npm_spec(range_.strip()) if isinstance(range_, str) else None
    if spec is None:
        return False
    if spec.match(parsed):
        return True
    if include_prerelease and parsed.prerelease:
        return spec.match(semantic_version.Version(major=parsed.major, minor=parsed.minor, patch=parsed.patch))
    return False


def max_satisfying(versions: Iterable[str], range_: str) -> Optional[str]:
    """Return the highest version satisfying range, as originally spelled.

    Invalid version strings are skipped. Ties between spellings that only
    differ by build metadata keep the first one seen.
    """
    best: Optional[str] = None
    best_parsed: Optional[semantic_version.Version] = None
    for candidate in versions:
        if not satisfies(candidate, range_):
            continue
        parsed = parse_version(candidate)
        if best_parsed is None or parsed > best_parsed:
            best, best_parsed = candidate, parsed
    return best


def max_version(versions: Iterable[str], include_prerelease: bool = False) -> Optional[str]:
    """Return the highest valid version, skipping pre-releases unless asked."""
    best: Optional[str] = None
    best_parsed: Optional[semantic_version.Version] = None
    for candidate in versions:
        parsed = parse_version(candidate)
        if parsed is None or (parsed.prerelease and not include_prerelease):
            continue
        if best_parsed is None or parsed > best_parsed:
            best, best_parsed = candidate, parsed
    return best
