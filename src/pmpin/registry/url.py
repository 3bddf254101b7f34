"""Generic URL registry: a JSON document listing versions and tags."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..common.http_client import HttpClient
from ..errors import HttpError
from ..models import UrlRegistrySpec
from ..settings import BrokerSettings


async def _fetch_document(spec: UrlRegistrySpec, http: HttpClient) -> Dict[str, Any]:
    data = await http.fetch_json(spec.url)
    if not isinstance(data, dict):
        raise HttpError(f"Unexpected registry document at {spec.url}; expected an object")
    return data


async def fetch_available_versions(spec: UrlRegistrySpec, http: HttpClient, settings: BrokerSettings) -> List[str]:
    """Versions are the list, or the keys of the mapping, under versions_field."""
    field = (await _fetch_document(spec, http)).get(spec.versions_field) or []
    if isinstance(field, dict):
        return list(field.keys())
    return [str(v) for v in field]


async def fetch_available_tags(spec: UrlRegistrySpec, http: HttpClient, settings: BrokerSettings) -> Dict[str, str]:
    field = (await _fetch_document(spec, http)).get(spec.tags_field) or {}
    if not isinstance(field, dict):
        raise HttpError(f"Unexpected '{spec.tags_field}' field at {spec.url}; expected an object")
    return {str(k): str(v) for k, v in field.items()}


async def fetch_latest_stable_version(spec: UrlRegistrySpec, http: HttpClient, settings: BrokerSettings) -> Optional[str]:
    return (await fetch_available_tags(spec, http, settings)).get("stable")
