"""Registry clients, selected by the kind of registry spec.

Each variant of ``RegistrySpec`` has one module implementing
``fetch_available_versions``, ``fetch_available_tags`` and
``fetch_latest_stable_version``; the functions below dispatch on the
variant. Adding a registry kind means adding a variant and a module here.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from ..common.http_client import HttpClient
from ..models import GitRegistrySpec, NpmRegistrySpec, RegistrySpec, UrlRegistrySpec
from ..settings import BrokerSettings
from . import git, npm, url


_CLIENTS = {
    NpmRegistrySpec: npm,
    GitRegistrySpec: git,
    UrlRegistrySpec: url,
}


def _client_for(spec: RegistrySpec):
    client = _CLIENTS.get(type(spec))
    if client is not None:
        return client
    raise TypeError(f"Unsupported registry specification {spec!r}")


async def fetch_available_versions(spec: RegistrySpec, http: HttpClient, settings: BrokerSettings) -> List[str]:
    return await _client_for(spec).fetch_available_versions(spec, http, settings)


async def fetch_available_tags(spec: RegistrySpec, http: HttpClient, settings: BrokerSettings) -> Dict[str, str]:
    return await _client_for(spec).fetch_available_tags(spec, http, settings)


async def fetch_latest_stable_version(spec: RegistrySpec, http: HttpClient, settings: BrokerSettings) -> Optional[str]:
    return await _client_for(spec).fetch_latest_stable_version(spec, http, settings)


__all__ = [
    "fetch_available_versions",
    "fetch_available_tags",
    "fetch_latest_stable_version",
]
