"""Data models for package manager descriptors, locators and definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union
from urllib.parse import urlparse


def is_url(value: str) -> bool:
    """Return True if value parses as an absolute URL with a host."""
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc)


@dataclass(frozen=True)
class Descriptor:
    """A package manager name plus the version range, tag or URL requested."""
    name: str
    range: str

    def __str__(self) -> str:
        return f"{self.name}@{self.range}"


@dataclass(frozen=True)
class Locator:
    """A package manager name plus the exact reference to install.

    The reference is a version, optionally suffixed by ``+<algorithm>.<digest>``,
    or a URL when the project points at a custom build.
    """
    name: str
    reference: str

    @property
    def is_url(self) -> bool:
        return is_url(self.reference)

    def __str__(self) -> str:
        return f"{self.name}@{self.reference}"


@dataclass(frozen=True)
class NpmRegistrySpec:
    """Versions and tags come from an npm-style registry packument."""
    package: str
    type: str = "npm"


@dataclass(frozen=True)
class GitRegistrySpec:
    """Versions come from the tags of a git remote.

    ``pattern`` is the tag name with ``{}`` standing for the version,
    e.g. ``v{}`` or ``@yarnpkg/cli/{}``.
    """
    repository: str
    pattern: str = "v{}"
    type: str = "git"


@dataclass(frozen=True)
class UrlRegistrySpec:
    """Versions and tags come from two fields of a JSON document."""
    url: str
    tags_field: str = "tags"
    versions_field: str = "versions"
    type: str = "url"


RegistrySpec = Union[NpmRegistrySpec, GitRegistrySpec, UrlRegistrySpec]
BinSpec = Union[Dict[str, str], List[str]]


@dataclass(frozen=True)
class PackageManagerSpec:
    """How a range of versions is downloaded and where its binaries live."""
    url: str
    bin: BinSpec
    registry: RegistrySpec
    npm_registry: Optional[NpmRegistrySpec] = None


@dataclass
class Definition:
    """Static configuration of one supported package manager."""
    name: str
    default: str
    fetch_latest_from: RegistrySpec
    ranges: List[Tuple[str, PackageManagerSpec]]
    transparent_commands: List[List[str]] = field(default_factory=list)
    transparent_default: Optional[str] = None

    def bin_names(self) -> List[str]:
        """Every binary name exposed by any range of this definition."""
        names: List[str] = []
        for _, spec in self.ranges:
            bins = spec.bin if isinstance(spec.bin, list) else list(spec.bin.keys())
            for name in bins:
                if name not in names:
                    names.append(name)
        return names


@dataclass(frozen=True)
class InstallInfo:
    """A locator installed on disk, with the spec used to install it."""
    location: str
    locator: Locator
    spec: PackageManagerSpec


@dataclass(frozen=True)
class PackageManagerRequest:
    """What the command line asked to run, e.g. ``yarn@3.6.0 install``."""
    package_manager: str
    binary_name: str
    binary_version: Optional[str] = None


@dataclass
class NoProject:
    """No manifest was found in any ancestor directory."""
    target: str
    env: Dict[str, str] = field(default_factory=dict)


@dataclass
class NoSpec:
    """A manifest was found but it has no package manager field."""
    target: str
    env: Dict[str, str] = field(default_factory=dict)


@dataclass
class Found:
    """A manifest declares a package manager."""
    spec: Descriptor
    manifest_path: str
    env: Dict[str, str] = field(default_factory=dict)


LoadSpecResult = Union[NoProject, NoSpec, Found]
