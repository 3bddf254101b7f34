"""Git remote registry: versions are read from the tags of a repository.

Uses the smart-HTTP ref advertisement (``info/refs?service=git-upload-pack``),
so no git binary is needed.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set

from ..common.http_client import HttpClient
from ..models import GitRegistrySpec
from ..semver_utils import is_valid_version, max_version
from ..settings import BrokerSettings

logger = logging.getLogger(__name__)

_TAG_PREFIX = "refs/tags/"
_PEELED_SUFFIX = "^{}"


def parse_ref_advertisement(data: bytes) -> Set[str]:
    """Extract ref names from a pkt-line encoded ref advertisement.

    Service headers are skipped; flush packets separate sections. A
    repository without refs advertises ``capabilities^{}`` and yields an
    empty set.
    """
    refs: Set[str] = set()
    offset = 0
    while offset + 4 <= len(data):
        try:
            length = int(data[offset:offset + 4].decode("ascii"), 16)
        except ValueError:
            break
        if length == 0:
            offset += 4
            continue
        if length < 4:
            break
        line = data[offset + 4:offset + length].decode("utf-8", errors="replace").rstrip("\n")
        offset += length

        if line.startswith("#"):
            continue
        name_end = line.find("\0")
        if name_end == -1:
            name_end = len(line)
        name_start = line.find(" ")
        if name_start == -1 or name_start >= name_end:
            continue
        name = line[name_start + 1:name_end]
        if name == "capabilities^{}":
            return set()
        refs.add(name)
    return refs


def _tag_version(ref: str, pattern: str) -> Optional[str]:
    if not ref.startswith(_TAG_PREFIX):
        return None
    tag = ref[len(_TAG_PREFIX):]
    if tag.endswith(_PEELED_SUFFIX):
        tag = tag[:-len(_PEELED_SUFFIX)]
    prefix, _, suffix = pattern.partition("{}")
    if not tag.startswith(prefix) or not tag.endswith(suffix) or len(tag) <= len(prefix) + len(suffix):
        return None
    version = tag[len(prefix):len(tag) - len(suffix)]
    return version if is_valid_version(version) else None


async def ls_remote(repository: str, http: HttpClient) -> Set[str]:
    data = await http.fetch_bytes(f"{repository}/info/refs?service=git-upload-pack")
    return parse_ref_advertisement(data)


async def fetch_available_versions(spec: GitRegistrySpec, http: HttpClient, settings: BrokerSettings) -> List[str]:
    refs = await ls_remote(spec.repository, http)
    versions = []
    for ref in sorted(refs):
        version = _tag_version(ref, spec.pattern)
        if version is not None and version not in versions:
            versions.append(version)
    logger.debug("Found %d tagged versions in %s", len(versions), spec.repository)
    return versions


async def fetch_available_tags(spec: GitRegistrySpec, http: HttpClient, settings: BrokerSettings) -> Dict[str, str]:
    """Git has no dist-tags; ``latest`` maps to the highest stable tag."""
    latest = max_version(await fetch_available_versions(spec, http, settings))
    return {"latest": latest} if latest else {}


async def fetch_latest_stable_version(spec: GitRegistrySpec, http: HttpClient, settings: BrokerSettings) -> Optional[str]:
    return max_version(await fetch_available_versions(spec, http, settings))
