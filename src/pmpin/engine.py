"""Resolution engine: from descriptors to installed package managers."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from . import registry
from .common.http_client import HttpClient
from .common.logging_utils import Timer, extra_context, is_debug_enabled
from .config import binary_entries, load_definitions
from .errors import (
    AssertionFailure,
    HttpError,
    NetworkDisabled,
    NoMatchingVersion,
    TagsNotAllowed,
    UnsupportedPackageManager,
)
from .installer import Installer
from .last_known_good import LastKnownGoodStore
from .launcher import run_version
from .models import (
    Definition,
    Descriptor,
    InstallInfo,
    LoadSpecResult,
    Locator,
    PackageManagerRequest,
    PackageManagerSpec,
    RegistrySpec,
    UrlRegistrySpec,
    is_url,
)
from .project import load_spec, needs_fallback, select_descriptor
from .semver_utils import is_valid_version, max_satisfying, satisfies, strip_build
from .settings import BrokerSettings
from .spec_parser import is_tag, parse_spec

logger = logging.getLogger(__name__)


class Engine:
    """Resolves, installs and runs package managers for one invocation."""

    def __init__(
        self,
        settings: BrokerSettings,
        http: HttpClient,
        definitions: Optional[Dict[str, Definition]] = None,
    ):
        """Initialize the engine.

        Args:
            settings: Broker settings for this invocation.
            http: Shared transport for registries and downloads.
            definitions: Package manager table; defaults to the configured one.
        """
        self.settings = settings
        self.http = http
        self.definitions = definitions if definitions is not None else load_definitions(settings.definitions_path)
        self.installer = Installer(settings, http)
        self.last_known_good = LastKnownGoodStore(settings.install_root)
        self._binaries = binary_entries(self.definitions)

    def get_definition(self, name: str) -> Definition:
        definition = self.definitions.get(name)
        if definition is None:
            raise UnsupportedPackageManager(
                f"This package manager ({name}) isn't supported by this pmpin build"
            )
        return definition

    def get_package_manager_for(self, binary_name: str) -> Optional[str]:
        """Return the package manager providing binary_name, e.g. npm for npx."""
        return self._binaries.get(binary_name)

    def get_package_manager_spec_for(self, locator: Locator) -> PackageManagerSpec:
        """Pick the newest range entry covering the locator's version.

        URL locators get a spec pointing at the URL itself, with the binaries
        of the newest entry when the name is a known package manager.

        Raises:
            AssertionFailure: If no entry covers the version.
        """
        if locator.is_url:
            definition = self.definitions.get(locator.name)
            bins = definition.ranges[-1][1].bin if definition else [locator.name]
            return PackageManagerSpec(
                url=locator.reference,
                bin=bins,
                registry=UrlRegistrySpec(url=locator.reference),
            )

        definition = self.get_definition(locator.name)
        version = strip_build(locator.reference)
        for range_pattern, spec in reversed(definition.ranges):
            if satisfies(version, range_pattern, include_prerelease=True):
                return spec
        patterns = ", ".join(pattern for pattern, _ in definition.ranges)
        raise AssertionFailure(
            f"Specified resolution ({locator.reference}) isn't supported by any of {patterns}"
        )

    async def get_default_version(self, name: str) -> str:
        """Return the version to use when nothing else is pinned.

        The last-known-good record wins; without one, the latest stable
        release is fetched and recorded, unless that is disabled, in which
        case the built-in default is returned.
        """
        definition = self.get_definition(name)

        with self.last_known_good.open() as document:
            known = document.get(name)
            if known is not None:
                logger.debug("Using last known good %s@%s", name, known)
                return known

            if not self.settings.default_to_latest or not self.settings.enable_network:
                return definition.default

            try:
                latest = await registry.fetch_latest_stable_version(
                    definition.fetch_latest_from, self.http, self.settings
                )
            except NetworkDisabled:
                return definition.default
            except HttpError as exc:
                logger.warning("Couldn't fetch the latest %s release, using %s: %s", name, definition.default, exc)
                return definition.default

            if not latest:
                return definition.default
            document.set(name, latest)
            logger.debug("Recorded %s@%s as last known good", name, latest)
            return latest

    async def ensure_package_manager(self, locator: Locator) -> InstallInfo:
        spec = self.get_package_manager_spec_for(locator)
        location = await self.installer.install_version(locator, spec)
        return InstallInfo(location=location, locator=locator, spec=spec)

    async def _fetch_versions(self, specs: List[RegistrySpec]) -> Dict[RegistrySpec, List[str]]:
        unique: List[RegistrySpec] = []
        for spec in specs:
            if spec not in unique:
                unique.append(spec)
        results = await asyncio.gather(
            *(registry.fetch_available_versions(spec, self.http, self.settings) for spec in unique)
        )
        return dict(zip(unique, results))

    async def resolve_descriptor(
        self,
        descriptor: Descriptor,
        allow_tags: bool = False,
        use_cache: bool = True,
    ) -> Optional[Locator]:
        """Resolve descriptor to a concrete locator.

        Args:
            descriptor: Name plus version, range, tag or URL.
            allow_tags: Accept tags such as ``latest``.
            use_cache: Prefer an already installed match over the network.

        Returns:
            The locator, or None when no known release satisfies the range.

        Raises:
            TagsNotAllowed: If a tag is used without allow_tags.
            UnsupportedPackageManager: If the name is unknown.
            NoMatchingVersion: If a tag is not published.
        """
        if is_url(descriptor.range):
            return Locator(name=descriptor.name, reference=descriptor.range)

        definition = self.get_definition(descriptor.name)
        range_ = descriptor.range

        if is_tag(range_):
            if not allow_tags:
                raise TagsNotAllowed(
                    f"Packages managers can't be referenced via tags in this context ({descriptor})"
                )
            _, newest = definition.ranges[-1]
            tags = await registry.fetch_available_tags(newest.registry, self.http, self.settings)
            resolved = tags.get(range_)
            if resolved is None:
                raise NoMatchingVersion(f"Tag not found ({descriptor})")
            logger.debug("Resolved tag %s to %s", descriptor, resolved)
            range_ = resolved

        if use_cache:
            cached = self.installer.find_installed_version(Descriptor(name=descriptor.name, range=range_))
            if cached is not None:
                logger.debug("Found %s@%s in the cache", descriptor.name, cached)
                return Locator(name=descriptor.name, reference=cached)

        if is_valid_version(range_):
            return Locator(name=descriptor.name, reference=range_)

        with Timer() as t:
            by_registry = await self._fetch_versions([spec.registry for _, spec in definition.ranges])

        candidates: List[str] = []
        for range_pattern, spec in definition.ranges:
            for version in by_registry[spec.registry]:
                if version not in candidates and satisfies(version, range_pattern, include_prerelease=True):
                    candidates.append(version)

        best = max_satisfying(candidates, range_)
        if is_debug_enabled(logger):
            logger.debug(
                "Resolved range",
                extra=extra_context(
                    event="resolve",
                    component="engine",
                    package_manager=descriptor.name,
                    range=range_,
                    candidates=len(candidates),
                    outcome=best or "no_match",
                    duration_ms=t.duration_ms(),
                ),
            )
        if best is None:
            return None
        return Locator(name=descriptor.name, reference=best)

    def _is_transparent(self, definition: Definition, binary_name: str, args: List[str]) -> bool:
        for command in definition.transparent_commands:
            if command and command[0] == binary_name and all(
                index < len(args) and args[index] == segment
                for index, segment in enumerate(command[1:])
            ):
                return True
        return False

    async def execute_package_manager_request(
        self,
        request: PackageManagerRequest,
        args: List[str],
        cwd: str,
        project: Optional[LoadSpecResult] = None,
    ) -> int:
        """Resolve, install and run the requested binary.

        Args:
            request: Binary and package manager asked for on the command line.
            args: Arguments forwarded to the binary.
            cwd: Directory the project lookup starts from.
            project: Pre-computed project lookup for cwd, if any.

        Returns:
            Exit code of the package manager.

        Raises:
            NoMatchingVersion: If the descriptor doesn't resolve to a release.
            UnsafeCustomUrl: If the command line points a known package
                manager at a URL without opting in.
        """
        definition = self.get_definition(request.package_manager)
        transparent = self._is_transparent(definition, request.binary_name, args)

        if project is None:
            project = load_spec(cwd, self.settings)

        if needs_fallback(project, request.package_manager):
            default_version = await self.get_default_version(request.package_manager)
            reference = (definition.transparent_default or default_version) if transparent else default_version
            fallback = Locator(name=request.package_manager, reference=reference)
        else:
            fallback = Locator(name=request.package_manager, reference=project.spec.range)

        descriptor = select_descriptor(project, fallback, self.settings, transparent)
        if request.binary_version:
            descriptor = parse_spec(
                f"{request.package_manager}@{request.binary_version}",
                "the command line",
                enforce_exact_version=False,
                allow_unsafe_urls=self.settings.allow_unsafe_custom_urls,
            )

        resolved = await self.resolve_descriptor(descriptor, allow_tags=True)
        if resolved is None:
            raise NoMatchingVersion(
                f"Failed to successfully resolve '{descriptor.range}' to a valid {descriptor.name} release"
            )

        info = await self.ensure_package_manager(resolved)
        await self.http.stop()
        return await run_version(info, request.binary_name, args, self.settings)
