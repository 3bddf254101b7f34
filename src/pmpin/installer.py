"""Install manager: puts package manager releases into the shared cache.

An install is staged in a temporary directory created inside the install
root, verified, then renamed to ``<root>/<name>/<reference>``. The rename is
the only synchronization between processes: a reader either sees a complete
directory or nothing, and a process losing the rename race discards its
staging copy and reuses the winner's.
"""

from __future__ import annotations

import asyncio
import errno
import hashlib
import logging
import os
import posixpath
import tarfile
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from .common.http_client import HttpClient
from .common.logging_utils import Timer, extra_context, is_debug_enabled, safe_url
from .constants import Constants
from .folders import get_temporary_folder, remove_tree
from .integrity import ArtifactCheck, parse_reference_digest, verify_signature
from .models import Descriptor, Locator, NpmRegistrySpec, PackageManagerSpec
from .registry import npm as npm_registry
from .semver_utils import is_valid_version, max_satisfying, parse_version, strip_build
from .settings import BrokerSettings

logger = logging.getLogger(__name__)

_RACE_ERRNOS = (errno.ENOTEMPTY, errno.EEXIST)
_PERMISSION_ERRNOS = (errno.EPERM, errno.EACCES)


def url_folder_name(url: str) -> str:
    """Stable cache folder name for a URL reference."""
    return "url-" + hashlib.sha256(url.encode("utf-8")).hexdigest()[:32]


def is_tarball(url: str) -> bool:
    return urlsplit(url).path.endswith(Constants.TARBALL_EXTENSIONS)


def url_basename(url: str) -> str:
    return posixpath.basename(urlsplit(url).path)


def _strip_component(name: str) -> str:
    parts = name.lstrip("/").split("/", 1)
    return parts[1] if len(parts) == 2 else ""


def extract_tarball(archive_path: str, target: str) -> None:
    """Extract a gzipped tarball into target, dropping the top-level folder."""
    with tarfile.open(archive_path, "r:*") as archive:
        members: List[tarfile.TarInfo] = []
        for member in archive.getmembers():
            stripped = _strip_component(member.name)
            if not stripped:
                continue
            member.name = stripped
            if member.islnk():
                member.linkname = _strip_component(member.linkname)
            members.append(member)
        archive.extractall(target, members=members, filter="data")


def _npm_registry_of(spec: PackageManagerSpec) -> Optional[NpmRegistrySpec]:
    if spec.npm_registry is not None:
        return spec.npm_registry
    if isinstance(spec.registry, NpmRegistrySpec):
        return spec.registry
    return None


class Installer:
    """Installs locators under the install root, at most once per reference."""

    def __init__(self, settings: BrokerSettings, http: HttpClient):
        self._settings = settings
        self._http = http
        self._pending: Dict[str, "asyncio.Task[str]"] = {}

    @property
    def install_root(self) -> str:
        return self._settings.install_root

    def install_path_for(self, locator: Locator) -> str:
        folder = url_folder_name(locator.reference) if locator.is_url else locator.reference
        return os.path.join(self.install_root, locator.name, folder)

    def find_installed_version(self, descriptor: Descriptor) -> Optional[str]:
        """Return the highest installed reference satisfying descriptor.range.

        An exact version only matches the folder of that exact reference, so
        that a pinned digest is never satisfied by a differently-verified
        install.
        """
        if is_valid_version(descriptor.range):
            locator = Locator(name=descriptor.name, reference=descriptor.range)
            return descriptor.range if os.path.isdir(self.install_path_for(locator)) else None

        folder = os.path.join(self.install_root, descriptor.name)
        try:
            entries = os.listdir(folder)
        except FileNotFoundError:
            return None

        candidates = [
            entry for entry in entries
            if not entry.startswith(".") and parse_version(entry) is not None
        ]
        return max_satisfying(candidates, descriptor.range)

    async def install_version(self, locator: Locator, spec: PackageManagerSpec) -> str:
        """Make sure locator is installed and return its folder.

        Concurrent calls for the same locator within this process share one
        download; across processes the final rename decides the winner.

        Raises:
            IntegrityMismatch: If the artifact fails verification. Nothing is
                left in the cache in that case.
            HttpError: If the download fails.
        """
        install_path = self.install_path_for(locator)
        if os.path.isdir(install_path):
            logger.debug("Reusing %s", locator)
            return install_path

        task = self._pending.get(install_path)
        if task is None:
            task = asyncio.ensure_future(self._install(locator, spec, install_path))
            self._pending[install_path] = task
            task.add_done_callback(lambda done: self._forget(install_path, done))
        return await asyncio.shield(task)

    def _forget(self, key: str, task: "asyncio.Task[str]") -> None:
        if self._pending.get(key) is task:
            del self._pending[key]

    async def _download_plan(self, locator: Locator, spec: PackageManagerSpec) -> Tuple[str, ArtifactCheck]:
        """Pick the URL to fetch and the digests the artifact must match."""
        check = ArtifactCheck(str(locator), self._settings)
        if locator.is_url:
            return locator.reference, check

        version = strip_build(locator.reference)
        url = spec.url.replace("{}", version)
        registry = _npm_registry_of(spec)
        metadata = None

        if registry is not None and self._settings.uses_custom_npm_registry:
            metadata = await npm_registry.fetch_tarball_url_and_signature(
                self._http, self._settings, registry.package, version
            )
            url = metadata["tarball"].replace(Constants.REGISTRY_URL_NPM, self._settings.npm_registry_url)

        digest = parse_reference_digest(locator.reference)
        if digest is not None:
            check.expect(*digest)
        elif registry is not None and not self._settings.skip_integrity_check:
            if metadata is None:
                metadata = await npm_registry.fetch_tarball_url_and_signature(
                    self._http, self._settings, registry.package, version
                )
            verify_signature(
                signatures=metadata["signatures"],
                integrity=metadata["integrity"],
                package_name=registry.package,
                version=version,
                settings=self._settings,
            )
            check.expect_sri(metadata["integrity"])
        return url, check

    async def _install(self, locator: Locator, spec: PackageManagerSpec, install_path: str) -> str:
        url, check = await self._download_plan(locator, spec)
        tmp_folder = get_temporary_folder(self.install_root)
        archive_path = f"{tmp_folder}.download"

        if is_debug_enabled(logger):
            logger.debug(
                "Installing package manager",
                extra=extra_context(
                    event="install_start",
                    component="installer",
                    package_manager=locator.name,
                    reference=locator.reference,
                    target=safe_url(url),
                    staging=tmp_folder,
                ),
            )

        try:
            with Timer() as t:
                await self._http.download(url, archive_path, check.hashers)
            check.verify()

            if is_tarball(url):
                await asyncio.to_thread(extract_tarball, archive_path, tmp_folder)
            else:
                os.replace(archive_path, os.path.join(tmp_folder, url_basename(url)))

            os.makedirs(os.path.dirname(install_path), exist_ok=True)
            try:
                os.rename(tmp_folder, install_path)
            except OSError as exc:
                if not self._is_rename_race(exc, install_path):
                    raise
                logger.debug("Another process installed %s first", locator)
                remove_tree(tmp_folder)
        except BaseException:
            remove_tree(tmp_folder)
            raise
        finally:
            if os.path.exists(archive_path):
                os.unlink(archive_path)

        logger.debug(
            "Install finished",
            extra=extra_context(
                event="install_finish",
                component="installer",
                package_manager=locator.name,
                reference=locator.reference,
                duration_ms=t.duration_ms(),
            ),
        )
        return install_path

    @staticmethod
    def _is_rename_race(exc: OSError, install_path: str) -> bool:
        if exc.errno in _RACE_ERRNOS:
            return True
        # Windows reports a taken destination as a permission error
        return exc.errno in _PERMISSION_ERRNOS and os.path.isdir(install_path)

    def clean(self) -> None:
        """Remove the whole cache, installs and records alike."""
        remove_tree(self.install_root)
        logger.debug("Removed %s", self.install_root)
