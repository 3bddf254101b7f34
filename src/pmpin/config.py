"""Package manager definitions: defaults, download URLs and binaries.

The built-in table can be replaced by a YAML or JSON file named by
PMPIN_DEFINITIONS, using the same layout as ``DEFAULT_CONFIG``.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

import yaml

from .errors import UsageError
from .models import (
    Definition,
    GitRegistrySpec,
    NpmRegistrySpec,
    PackageManagerSpec,
    RegistrySpec,
    UrlRegistrySpec,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "definitions": {
        "npm": {
            "default": "10.9.2",
            "fetchLatestFrom": {"type": "npm", "package": "npm"},
            "transparent": {
                "commands": [["npm", "init"], ["npx"]],
            },
            "ranges": {
                "*": {
                    "url": "https://registry.npmjs.org/npm/-/npm-{}.tgz",
                    "bin": {
                        "npm": "./bin/npm-cli.js",
                        "npx": "./bin/npx-cli.js",
                    },
                    "registry": {"type": "npm", "package": "npm"},
                    "npmRegistry": {"type": "npm", "package": "npm"},
                },
            },
        },
        "pnpm": {
            "default": "9.15.4",
            "fetchLatestFrom": {"type": "npm", "package": "pnpm"},
            "transparent": {
                "commands": [["pnpm", "init"], ["pnpx"], ["pnpm", "dlx"]],
            },
            "ranges": {
                "<6.0.0": {
                    "url": "https://registry.npmjs.org/pnpm/-/pnpm-{}.tgz",
                    "bin": {
                        "pnpm": "./bin/pnpm.js",
                        "pnpx": "./bin/pnpx.js",
                    },
                    "registry": {"type": "npm", "package": "pnpm"},
                    "npmRegistry": {"type": "npm", "package": "pnpm"},
                },
                ">=6.0.0": {
                    "url": "https://registry.npmjs.org/pnpm/-/pnpm-{}.tgz",
                    "bin": {
                        "pnpm": "./bin/pnpm.cjs",
                        "pnpx": "./bin/pnpx.cjs",
                    },
                    "registry": {"type": "npm", "package": "pnpm"},
                    "npmRegistry": {"type": "npm", "package": "pnpm"},
                },
            },
        },
        "yarn": {
            "default": "1.22.22",
            "fetchLatestFrom": {"type": "npm", "package": "yarn"},
            "transparent": {
                "default": "4.5.3",
                "commands": [["yarn", "init"], ["yarn", "dlx"]],
            },
            "ranges": {
                "<2.0.0": {
                    "url": "https://registry.yarnpkg.com/yarn/-/yarn-{}.tgz",
                    "bin": {
                        "yarn": "./bin/yarn.js",
                        "yarnpkg": "./bin/yarn.js",
                    },
                    "registry": {"type": "npm", "package": "yarn"},
                    "npmRegistry": {"type": "npm", "package": "yarn"},
                },
                ">=2.0.0": {
                    "url": "https://repo.yarnpkg.com/{}/packages/yarnpkg-cli/bin/yarn.js",
                    "bin": ["yarn", "yarnpkg"],
                    "registry": {
                        "type": "url",
                        "url": "https://repo.yarnpkg.com/tags",
                        "fields": {"tags": "latest", "versions": "tags"},
                    },
                },
            },
        },
    },
}


def parse_registry_spec(data: Any, where: str) -> RegistrySpec:
    """Build the registry variant described by a ``{"type": ...}`` mapping."""
    if not isinstance(data, dict):
        raise UsageError(f"Invalid registry specification in {where}; expected an object")
    kind = data.get("type")
    if kind == "npm":
        return NpmRegistrySpec(package=str(data["package"]))
    if kind == "git":
        return GitRegistrySpec(
            repository=str(data["repository"]).rstrip("/"),
            pattern=str(data.get("pattern", "v{}")),
        )
    if kind == "url":
        fields = data.get("fields") or {}
        return UrlRegistrySpec(
            url=str(data["url"]),
            tags_field=str(fields.get("tags", "tags")),
            versions_field=str(fields.get("versions", "versions")),
        )
    raise UsageError(f"Unsupported registry type {kind!r} in {where}")


def _parse_bin(value: Any, where: str):
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    if isinstance(value, dict) and all(isinstance(v, str) for v in value.values()):
        return dict(value)
    raise UsageError(f"Invalid bin specification in {where}")


def _parse_definition(name: str, data: Dict[str, Any]) -> Definition:
    ranges = []
    for range_pattern, raw_spec in (data.get("ranges") or {}).items():
        where = f"{name} {range_pattern}"
        npm_registry = raw_spec.get("npmRegistry")
        ranges.append((
            range_pattern,
            PackageManagerSpec(
                url=str(raw_spec["url"]),
                bin=_parse_bin(raw_spec.get("bin"), where),
                registry=parse_registry_spec(raw_spec.get("registry"), where),
                npm_registry=parse_registry_spec(npm_registry, where) if npm_registry else None,
            ),
        ))
    if not ranges:
        raise UsageError(f"Definition of {name} does not list any range")

    transparent = data.get("transparent") or {}
    fetch_latest_from = data.get("fetchLatestFrom")
    return Definition(
        name=name,
        default=str(data["default"]),
        fetch_latest_from=(
            parse_registry_spec(fetch_latest_from, f"{name} fetchLatestFrom")
            if fetch_latest_from else ranges[-1][1].registry
        ),
        ranges=ranges,
        transparent_commands=[list(cmd) for cmd in transparent.get("commands", [])],
        transparent_default=transparent.get("default"),
    )


def parse_config(data: Dict[str, Any]) -> Dict[str, Definition]:
    """Turn a raw configuration mapping into definitions keyed by name.

    Range order is preserved; later ranges are the newer download schemes.
    """
    definitions = data.get("definitions") if isinstance(data, dict) else None
    if not isinstance(definitions, dict):
        raise UsageError("Invalid package manager definitions; expected a 'definitions' object")
    try:
        return {name: _parse_definition(name, body) for name, body in definitions.items()}
    except (KeyError, TypeError, AttributeError) as exc:
        raise UsageError(f"Invalid package manager definitions: {exc}") from exc


def _read_config_file(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as fh:
        if path.endswith(".json"):
            return json.load(fh)
        return yaml.safe_load(fh) or {}


def load_definitions(path: Optional[str] = None) -> Dict[str, Definition]:
    """Load definitions from path, or the built-in table when path is None.

    Raises:
        UsageError: If the file is missing or malformed.
    """
    if not path:
        return parse_config(DEFAULT_CONFIG)
    if not os.path.isfile(path):
        raise UsageError(f"Definitions file not found: {path}")
    try:
        data = _read_config_file(path)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise UsageError(f"Failed to load definitions from {path}: {exc}") from exc
    logger.debug("Loaded package manager definitions from %s", path)
    return parse_config(data)


def binary_entries(definitions: Dict[str, Definition]) -> Dict[str, str]:
    """Map every binary name (npx, pnpx, yarnpkg...) to its package manager."""
    entries: Dict[str, str] = {}
    for name, definition in definitions.items():
        for bin_name in definition.bin_names():
            entries.setdefault(bin_name, name)
    return entries
