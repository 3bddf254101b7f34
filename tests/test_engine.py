"""Tests for descriptor resolution and request execution."""

import asyncio
import json
import os
from unittest.mock import AsyncMock, patch

import pytest

from pmpin.config import parse_config
from pmpin.engine import Engine
from pmpin.errors import (
    AssertionFailure,
    NoMatchingVersion,
    TagsNotAllowed,
    UnsafeCustomUrl,
    UnsupportedPackageManager,
    UsageError,
)
from pmpin.models import Descriptor, Found, Locator, NoProject, PackageManagerRequest

from conftest import FakeHttp, make_tgz, version_script

PACKUMENT_URL = "https://registry.npmjs.org/yarn"
TAGS_URL = "https://repo.yarnpkg.com/tags"
BERRY_URL = "https://repo.yarnpkg.com/{}/packages/yarnpkg-cli/bin/yarn.js"

ROUTES = {
    PACKUMENT_URL: {
        "dist-tags": {"latest": "1.22.22"},
        "versions": {"1.22.4": {}, "1.22.22": {}, "2.4.3": {}},
    },
    TAGS_URL: {
        "latest": {"stable": "4.5.3", "canary": "4.6.0-rc.1"},
        "tags": ["1.0.0", "3.8.0", "4.5.3", "4.6.0-rc.1"],
    },
}


def make_engine(settings, routes=ROUTES, **kwargs):
    http = FakeHttp(routes, **kwargs)
    return Engine(settings, http), http


def recorded(engine, name):
    try:
        with open(engine.last_known_good.path, encoding="utf-8") as fh:
            content = fh.read()
    except FileNotFoundError:
        return None
    return json.loads(content).get(name) if content.strip() else None


class TestResolveDescriptor:
    """Tests for Engine.resolve_descriptor."""

    def test_exact_version_needs_no_network(self, settings):
        engine, http = make_engine(settings, enable_network=False)
        locator = asyncio.run(engine.resolve_descriptor(Descriptor("yarn", "1.22.4")))
        assert locator == Locator("yarn", "1.22.4")
        assert http.requests == []

    def test_range_takes_max_across_registries(self, settings):
        engine, http = make_engine(settings)
        locator = asyncio.run(engine.resolve_descriptor(Descriptor("yarn", "*")))
        assert locator == Locator("yarn", "4.5.3")
        assert sorted(http.requests) == [PACKUMENT_URL, TAGS_URL]

    def test_versions_are_filtered_by_their_range_entry(self, settings):
        engine, _ = make_engine(settings)
        # 2.4.3 is only published on the npm registry, which serves <2.0.0
        locator = asyncio.run(engine.resolve_descriptor(Descriptor("yarn", "<3.0.0")))
        assert locator == Locator("yarn", "1.22.22")

    def test_no_match(self, settings):
        engine, _ = make_engine(settings)
        assert asyncio.run(engine.resolve_descriptor(Descriptor("yarn", "^9.0.0"))) is None

    def test_tags_use_newest_entry(self, settings):
        engine, http = make_engine(settings)
        locator = asyncio.run(engine.resolve_descriptor(Descriptor("yarn", "stable"), allow_tags=True))
        assert locator == Locator("yarn", "4.5.3")
        assert http.requests == [TAGS_URL]

    def test_unknown_tag(self, settings):
        engine, _ = make_engine(settings)
        with pytest.raises(NoMatchingVersion, match="Tag not found"):
            asyncio.run(engine.resolve_descriptor(Descriptor("yarn", "nightly"), allow_tags=True))

    def test_tags_rejected_by_default(self, settings):
        engine, http = make_engine(settings)
        with pytest.raises(TagsNotAllowed):
            asyncio.run(engine.resolve_descriptor(Descriptor("yarn", "stable")))
        assert http.requests == []

    def test_cache_hit_skips_network(self, settings):
        os.makedirs(os.path.join(settings.install_root, "yarn", "1.22.19"))
        engine, http = make_engine(settings)
        locator = asyncio.run(engine.resolve_descriptor(Descriptor("yarn", "^1.22.0")))
        assert locator == Locator("yarn", "1.22.19")
        assert http.requests == []

        fresh = asyncio.run(engine.resolve_descriptor(Descriptor("yarn", "^1.22.0"), use_cache=False))
        assert fresh == Locator("yarn", "1.22.22")

    def test_url_resolves_to_itself(self, settings):
        engine, http = make_engine(settings)
        url = "https://example.com/yarn.js"
        assert asyncio.run(engine.resolve_descriptor(Descriptor("yarn", url))) == Locator("yarn", url)
        assert http.requests == []

    def test_unsupported_package_manager(self, settings):
        engine, _ = make_engine(settings)
        with pytest.raises(UnsupportedPackageManager, match="bun"):
            asyncio.run(engine.resolve_descriptor(Descriptor("bun", "1.0.0")))


class TestPackageManagerSpec:
    """Tests for picking the range entry of a locator."""

    def test_newest_matching_entry(self, settings):
        engine, _ = make_engine(settings)
        yarn = engine.get_definition("yarn")
        assert engine.get_package_manager_spec_for(Locator("yarn", "1.22.4+sha1.abc")) == yarn.ranges[0][1]
        assert engine.get_package_manager_spec_for(Locator("yarn", "4.0.0-rc.1")) == yarn.ranges[1][1]

    def test_url_locator(self, settings):
        engine, _ = make_engine(settings)
        spec = engine.get_package_manager_spec_for(Locator("yarn", "https://example.com/yarn.js"))
        assert spec.url == "https://example.com/yarn.js"
        assert spec.bin == ["yarn", "yarnpkg"]

    def test_uncovered_version(self, settings):
        definitions = parse_config({"definitions": {"yarn": {
            "default": "1.22.22",
            "ranges": {"<2.0.0": {
                "url": "https://registry.yarnpkg.com/yarn/-/yarn-{}.tgz",
                "bin": {"yarn": "./bin/yarn.js"},
                "registry": {"type": "npm", "package": "yarn"},
            }},
        }}})
        engine = Engine(settings, FakeHttp(), definitions)
        with pytest.raises(AssertionFailure, match="isn't supported by any of <2.0.0"):
            engine.get_package_manager_spec_for(Locator("yarn", "3.0.0"))

    def test_binary_lookup(self, settings):
        engine, _ = make_engine(settings)
        assert engine.get_package_manager_for("npx") == "npm"
        assert engine.get_package_manager_for("bunx") is None


class TestDefaultVersion:
    """Tests for the last-known-good default."""

    LATEST_URL = "https://registry.npmjs.org/yarn/latest"

    def test_record_wins(self, settings):
        engine, http = make_engine(settings)
        with engine.last_known_good.open() as document:
            document.set("yarn", "1.22.19")
        assert asyncio.run(engine.get_default_version("yarn")) == "1.22.19"
        assert http.requests == []

    def test_fetches_and_records_latest(self, settings):
        routes = {self.LATEST_URL: {"version": "1.22.22", "dist": {"shasum": "abc123"}}}
        engine, _ = make_engine(settings, routes)
        assert asyncio.run(engine.get_default_version("yarn")) == "1.22.22+sha1.abc123"
        assert recorded(engine, "yarn") == "1.22.22+sha1.abc123"

    def test_latest_without_digest_is_recorded_bare(self, settings):
        routes = {self.LATEST_URL: {"version": "1.22.22", "dist": {}}}
        engine, _ = make_engine(settings, routes)
        assert asyncio.run(engine.get_default_version("yarn")) == "1.22.22"
        assert recorded(engine, "yarn") == "1.22.22"

    def test_network_disabled(self, settings):
        settings.enable_network = False
        engine, http = make_engine(settings)
        assert asyncio.run(engine.get_default_version("yarn")) == "1.22.22"
        assert http.requests == []
        assert recorded(engine, "yarn") is None

    def test_default_to_latest_off(self, settings):
        settings.default_to_latest = False
        engine, http = make_engine(settings)
        assert asyncio.run(engine.get_default_version("pnpm")) == "9.15.4"
        assert http.requests == []

    def test_registry_error_falls_back(self, settings):
        engine, _ = make_engine(settings, {})
        assert asyncio.run(engine.get_default_version("yarn")) == "1.22.22"
        assert recorded(engine, "yarn") is None


class TestExecuteRequest:
    """Tests for the full resolve, install and run flow."""

    def _routes(self):
        return {
            "https://registry.yarnpkg.com/yarn/-/yarn-1.22.4.tgz": make_tgz({
                "package.json": json.dumps({"name": "yarn"}),
                "bin/yarn.js": version_script("1.22.4"),
            }),
            BERRY_URL.format("4.5.3"): version_script("4.5.3").encode("utf-8"),
        }

    def test_project_pin_is_installed_and_run(self, settings, tmp_path):
        engine, _ = make_engine(settings, self._routes())
        project = Found(spec=Descriptor("yarn", "1.22.4"), manifest_path=str(tmp_path / "package.json"))
        request = PackageManagerRequest(package_manager="yarn", binary_name="yarn")

        with patch("pmpin.engine.run_version", AsyncMock(return_value=7)) as run_version:
            code = asyncio.run(engine.execute_package_manager_request(request, ["install"], str(tmp_path), project))

        assert code == 7
        info, binary_name, args, _ = run_version.call_args.args
        assert info.locator == Locator("yarn", "1.22.4")
        assert os.path.isfile(os.path.join(info.location, "bin", "yarn.js"))
        assert (binary_name, args) == ("yarn", ["install"])

    def test_mismatch_is_rejected(self, settings, tmp_path):
        settings.default_to_latest = False
        engine, _ = make_engine(settings, self._routes())
        project = Found(spec=Descriptor("pnpm", "9.0.0"), manifest_path=str(tmp_path / "package.json"))
        request = PackageManagerRequest(package_manager="yarn", binary_name="yarn")

        with pytest.raises(UsageError, match="configured to use pnpm"):
            asyncio.run(engine.execute_package_manager_request(request, [], str(tmp_path), project))

    def test_transparent_command_uses_transparent_default(self, settings, tmp_path):
        settings.default_to_latest = False
        engine, _ = make_engine(settings, self._routes())
        project = Found(spec=Descriptor("pnpm", "9.0.0"), manifest_path=str(tmp_path / "package.json"))
        request = PackageManagerRequest(package_manager="yarn", binary_name="yarn")

        with patch("pmpin.engine.run_version", AsyncMock(return_value=0)) as run_version:
            asyncio.run(engine.execute_package_manager_request(request, ["init"], str(tmp_path), project))

        assert run_version.call_args.args[0].locator == Locator("yarn", "4.5.3")

    def test_binary_version_overrides(self, settings, tmp_path):
        settings.default_to_latest = False
        engine, _ = make_engine(settings, self._routes())
        request = PackageManagerRequest(package_manager="yarn", binary_name="yarn", binary_version="4.5.3")

        with patch("pmpin.engine.run_version", AsyncMock(return_value=0)) as run_version:
            asyncio.run(engine.execute_package_manager_request(
                request, [], str(tmp_path), NoProject(target=str(tmp_path / "package.json"))
            ))

        assert run_version.call_args.args[0].locator == Locator("yarn", "4.5.3")

    def test_command_line_url_needs_opt_in(self, settings, tmp_path):
        settings.default_to_latest = False
        url = "https://builds.example.com/yarn.js"
        engine, http = make_engine(settings, {url: version_script("custom").encode("utf-8")})
        request = PackageManagerRequest(package_manager="yarn", binary_name="yarn", binary_version=url)
        project = NoProject(target=str(tmp_path / "package.json"))

        with patch("pmpin.engine.run_version", AsyncMock(return_value=0)) as run_version:
            with pytest.raises(UnsafeCustomUrl):
                asyncio.run(engine.execute_package_manager_request(request, [], str(tmp_path), project))
            assert http.downloads == []
            run_version.assert_not_called()

            settings.allow_unsafe_custom_urls = True
            asyncio.run(engine.execute_package_manager_request(request, [], str(tmp_path), project))

        assert run_version.call_args.args[0].locator == Locator("yarn", url)
        assert http.downloads == [url]

    def test_command_line_tag(self, settings, tmp_path):
        settings.default_to_latest = False
        routes = dict(ROUTES)
        routes.update(self._routes())
        engine, _ = make_engine(settings, routes)
        request = PackageManagerRequest(package_manager="yarn", binary_name="yarn", binary_version="stable")

        with patch("pmpin.engine.run_version", AsyncMock(return_value=0)) as run_version:
            asyncio.run(engine.execute_package_manager_request(
                request, [], str(tmp_path), NoProject(target=str(tmp_path / "package.json"))
            ))

        assert run_version.call_args.args[0].locator == Locator("yarn", "4.5.3")

    def test_unresolvable_range(self, settings, tmp_path):
        engine, _ = make_engine(settings, ROUTES)
        project = Found(spec=Descriptor("yarn", "^9.0.0"), manifest_path=str(tmp_path / "package.json"))
        request = PackageManagerRequest(package_manager="yarn", binary_name="yarn")
        with pytest.raises(NoMatchingVersion, match="Failed to successfully resolve"):
            asyncio.run(engine.execute_package_manager_request(request, [], str(tmp_path), project))
