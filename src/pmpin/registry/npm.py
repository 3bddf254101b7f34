"""npm-style registry client: packuments, dist-tags and latest stable."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..common.http_client import HttpClient
from ..common.logging_utils import extra_context, is_debug_enabled
from ..constants import Constants
from ..errors import HttpError, IntegrityMismatch
from ..integrity import sri_to_hex, verify_signature
from ..models import NpmRegistrySpec
from ..settings import BrokerSettings

logger = logging.getLogger(__name__)


def _metadata_url(settings: BrokerSettings, package: str, version: Optional[str] = None) -> str:
    url = f"{settings.npm_registry_url}/{package}"
    if version:
        url = f"{url}/{version}"
    return url


async def fetch_metadata(
    http: HttpClient,
    settings: BrokerSettings,
    package: str,
    version: Optional[str] = None,
) -> Dict[str, Any]:
    """Fetch the abbreviated packument, or one version's manifest.

    Args:
        http: Shared transport.
        settings: Broker settings (registry URL).
        package: Package name on the registry.
        version: Version or dist-tag; None for the whole packument.

    Returns:
        Decoded JSON object.
    """
    url = _metadata_url(settings, package, version)
    data = await http.fetch_json(url, headers={"Accept": Constants.NPM_ABBREVIATED_ACCEPT})
    if not isinstance(data, dict):
        raise HttpError(f"Unexpected metadata for {package} from {settings.npm_registry_url}")
    if is_debug_enabled(logger):
        logger.debug(
            "npm metadata fetched",
            extra=extra_context(
                event="registry_metadata",
                component="npm_registry",
                package=package,
                version=version,
            ),
        )
    return data


async def fetch_available_versions(spec: NpmRegistrySpec, http: HttpClient, settings: BrokerSettings) -> List[str]:
    metadata = await fetch_metadata(http, settings, spec.package)
    return list((metadata.get("versions") or {}).keys())


async def fetch_available_tags(spec: NpmRegistrySpec, http: HttpClient, settings: BrokerSettings) -> Dict[str, str]:
    metadata = await fetch_metadata(http, settings, spec.package)
    tags = metadata.get("dist-tags") or {}
    return {str(k): str(v) for k, v in tags.items()}


async def fetch_latest_stable_version(spec: NpmRegistrySpec, http: HttpClient, settings: BrokerSettings) -> str:
    """Return the ``latest`` version with its digest appended.

    The registry signature over the version's integrity is checked first,
    unless integrity checks are disabled.

    Returns:
        ``<version>+sha512.<hex>``, or ``<version>+sha1.<shasum>`` for
        packages published without an SRI integrity. The bare version when
        neither digest is published.
    """
    metadata = await fetch_metadata(http, settings, spec.package, "latest")
    version = metadata.get("version")
    dist = metadata.get("dist") or {}
    integrity = dist.get("integrity")
    shasum = dist.get("shasum")
    if not isinstance(version, str):
        raise HttpError(f"No version in the latest metadata of {spec.package}")

    if not settings.skip_integrity_check:
        try:
            verify_signature(
                signatures=dist.get("signatures"),
                integrity=integrity,
                package_name=spec.package,
                version=version,
                settings=settings,
            )
        except IntegrityMismatch as exc:
            raise IntegrityMismatch(
                f"Cannot download the latest stable version of {spec.package}: {exc}; "
                f"you can disable signature verification by setting {Constants.ENV_INTEGRITY_KEYS}=0 "
                f"in your env, or use the built-in default by setting {Constants.ENV_DEFAULT_TO_LATEST}=0"
            ) from exc

    if integrity:
        return f"{version}+sha512.{sri_to_hex(integrity)}"
    if isinstance(shasum, str) and shasum:
        return f"{version}+sha1.{shasum}"
    return version


async def fetch_tarball_url_and_signature(
    http: HttpClient, settings: BrokerSettings, package: str, version: str
) -> Dict[str, Any]:
    """Return ``{"tarball", "signatures", "integrity"}`` for one version.

    Raises:
        HttpError: If the version has no usable tarball URL.
    """
    metadata = await fetch_metadata(http, settings, package, version)
    dist = metadata.get("dist") or {}
    tarball = dist.get("tarball")
    if not isinstance(tarball, str) or not tarball.startswith("http"):
        raise HttpError(f"{package}@{version} does not have a valid tarball.")
    return {
        "tarball": tarball,
        "signatures": dist.get("signatures"),
        "integrity": dist.get("integrity"),
    }
