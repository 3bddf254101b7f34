"""Tests for the project spec lookup and env overlay."""

import json
from unittest.mock import patch

import pytest

from pmpin.errors import UnsafeCustomUrl, UsageError
from pmpin.models import Descriptor, Found, Locator, NoProject, NoSpec
from pmpin.project import (
    apply_env_overlay,
    find_project_spec,
    load_spec,
    needs_fallback,
    read_env_overlay,
    select_descriptor,
)
from pmpin.settings import BrokerSettings


def write_manifest(folder, data):
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / "package.json"
    path.write_text(json.dumps(data) if not isinstance(data, str) else data, encoding="utf-8")
    return path


class TestLoadSpec:
    """Tests for the ancestor walk."""

    def test_no_project(self, tmp_path):
        with patch("pmpin.project._find_manifest", return_value=None):
            result = load_spec(str(tmp_path), BrokerSettings())
        assert isinstance(result, NoProject)
        assert result.target == str(tmp_path / "package.json")
        assert result.env == {}

    def test_nearest_manifest_wins(self, tmp_path):
        write_manifest(tmp_path, {"packageManager": "pnpm@9.0.0"})
        write_manifest(tmp_path / "app", {"packageManager": "yarn@1.22.4"})
        (tmp_path / "app" / "src").mkdir()

        result = load_spec(str(tmp_path / "app" / "src"), BrokerSettings())

        assert isinstance(result, Found)
        assert result.spec == Descriptor("yarn", "1.22.4")
        assert result.manifest_path == str(tmp_path / "app" / "package.json")

    def test_node_modules_is_skipped(self, tmp_path):
        write_manifest(tmp_path, {"packageManager": "yarn@1.22.4"})
        write_manifest(tmp_path / "node_modules", {"packageManager": "npm@10.0.0"})
        write_manifest(tmp_path / "node_modules" / "dep", {"name": "dep"})

        result = load_spec(str(tmp_path / "node_modules"), BrokerSettings())

        assert isinstance(result, Found)
        assert result.spec.name == "yarn"

    def test_no_spec(self, tmp_path):
        write_manifest(tmp_path, {"name": "app"})
        result = load_spec(str(tmp_path), BrokerSettings())
        assert isinstance(result, NoSpec)
        assert result.target == str(tmp_path / "package.json")

    def test_invalid_manifest(self, tmp_path):
        write_manifest(tmp_path, "{not json")
        with pytest.raises(UsageError, match="Invalid package.json"):
            load_spec(str(tmp_path), BrokerSettings())

    def test_non_object_manifest(self, tmp_path):
        write_manifest(tmp_path, [1, 2])
        with pytest.raises(UsageError):
            load_spec(str(tmp_path), BrokerSettings())

    def test_range_in_manifest_rejected(self, tmp_path):
        write_manifest(tmp_path, {"packageManager": "yarn@^1.0.0"})
        with pytest.raises(UsageError):
            load_spec(str(tmp_path), BrokerSettings())

    def test_overlay_can_allow_custom_urls(self, tmp_path):
        write_manifest(tmp_path, {"packageManager": "yarn@https://example.com/yarn.js"})
        with pytest.raises(UnsafeCustomUrl):
            load_spec(str(tmp_path), BrokerSettings())

        (tmp_path / ".pmpin.env").write_text("PMPIN_ENABLE_UNSAFE_CUSTOM_URLS=1\n", encoding="utf-8")
        result = load_spec(str(tmp_path), BrokerSettings())
        assert isinstance(result, Found)
        assert result.env == {"PMPIN_ENABLE_UNSAFE_CUSTOM_URLS": "1"}


class TestEnvOverlay:
    """Tests for the .pmpin.env overlay."""

    def test_only_broker_keys_are_kept(self, tmp_path):
        (tmp_path / ".pmpin.env").write_text(
            "PMPIN_ENABLE_NETWORK=0\nOTHER=1\n# comment\nPMPIN_NPM_REGISTRY=https://npm.example.com\n",
            encoding="utf-8",
        )
        overlay = read_env_overlay(str(tmp_path))
        assert overlay == {
            "PMPIN_ENABLE_NETWORK": "0",
            "PMPIN_NPM_REGISTRY": "https://npm.example.com",
        }

    def test_disabled_and_missing(self, tmp_path):
        (tmp_path / ".pmpin.env").write_text("PMPIN_ENABLE_NETWORK=0\n", encoding="utf-8")
        assert read_env_overlay(str(tmp_path), "0") == {}
        assert read_env_overlay(str(tmp_path), "other.env") == {}

    def test_real_environment_wins(self):
        environ = {"PMPIN_ENABLE_NETWORK": "1"}
        apply_env_overlay({"PMPIN_ENABLE_NETWORK": "0", "PMPIN_HOME": "/cache"}, environ)
        assert environ == {"PMPIN_ENABLE_NETWORK": "1", "PMPIN_HOME": "/cache"}


class TestSelectDescriptor:
    """Tests for choosing between the project spec and the fallback."""

    fallback = Locator("yarn", "1.22.22")

    def test_fallback_without_spec(self, tmp_path):
        result = NoSpec(target=str(tmp_path / "package.json"))
        assert needs_fallback(result, "yarn")
        assert select_descriptor(result, self.fallback, BrokerSettings()) == Descriptor("yarn", "1.22.22")

    def test_project_spec_for_same_manager(self, tmp_path):
        result = Found(spec=Descriptor("yarn", "1.22.4"), manifest_path=str(tmp_path / "package.json"))
        assert not needs_fallback(result, "yarn")
        assert select_descriptor(result, self.fallback, BrokerSettings()) == Descriptor("yarn", "1.22.4")

    def test_mismatch_is_an_error_in_strict_mode(self, tmp_path):
        result = Found(spec=Descriptor("pnpm", "9.0.0"), manifest_path=str(tmp_path / "package.json"))
        with pytest.raises(UsageError, match="configured to use pnpm"):
            select_descriptor(result, self.fallback, BrokerSettings())

    def test_mismatch_tolerated_for_transparent_commands(self, tmp_path):
        result = Found(spec=Descriptor("pnpm", "9.0.0"), manifest_path=str(tmp_path / "package.json"))
        assert select_descriptor(result, self.fallback, BrokerSettings(), transparent=True) == Descriptor("yarn", "1.22.22")

    def test_mismatch_tolerated_without_strict(self, tmp_path):
        result = Found(spec=Descriptor("pnpm", "9.0.0"), manifest_path=str(tmp_path / "package.json"))
        settings = BrokerSettings(enable_strict=False)
        assert select_descriptor(result, self.fallback, settings) == Descriptor("yarn", "1.22.22")

    def test_find_project_spec(self, tmp_path):
        write_manifest(tmp_path, {"packageManager": "yarn@1.22.4"})
        assert find_project_spec(str(tmp_path), self.fallback, BrokerSettings()) == Descriptor("yarn", "1.22.4")
