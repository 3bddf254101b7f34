"""Project spec lookup: nearest package.json plus the local env overlay."""

from __future__ import annotations

import json
import logging
import os
from typing import Dict, MutableMapping, Optional

from dotenv import dotenv_values

from .constants import Constants
from .errors import UsageError
from .models import Descriptor, Found, LoadSpecResult, Locator, NoProject, NoSpec
from .settings import BrokerSettings
from .spec_parser import parse_spec

logger = logging.getLogger(__name__)


def read_env_overlay(manifest_dir: str, env_file: Optional[str] = None) -> Dict[str, str]:
    """Read broker variables from the overlay file next to a manifest.

    Args:
        manifest_dir: Directory holding the selected package.json.
        env_file: Overlay path override; "0" disables the overlay. Relative
            paths are resolved against manifest_dir.

    Returns:
        Mapping of PMPIN_* keys to values; other keys are dropped.
    """
    if env_file == "0":
        return {}
    path = os.path.join(manifest_dir, env_file or Constants.ENV_OVERLAY_FILE)
    if not os.path.isfile(path):
        return {}
    values = dotenv_values(path)
    overlay = {
        key: value
        for key, value in values.items()
        if key.startswith(Constants.ENV_PREFIX) and value is not None
    }
    if overlay:
        logger.debug("Loaded %d variable(s) from %s", len(overlay), path)
    return overlay


def apply_env_overlay(overlay: Dict[str, str], environ: Optional[MutableMapping[str, str]] = None) -> None:
    """Merge overlay into environ; variables already set keep their value."""
    env = os.environ if environ is None else environ
    for key, value in overlay.items():
        env.setdefault(key, value)


def _find_manifest(initial_cwd: str) -> Optional[str]:
    next_cwd = os.path.abspath(initial_cwd)
    curr_cwd = ""
    while next_cwd != curr_cwd:
        curr_cwd = next_cwd
        next_cwd = os.path.dirname(curr_cwd)
        if os.path.basename(curr_cwd) == Constants.VENDOR_FOLDER:
            continue
        manifest_path = os.path.join(curr_cwd, Constants.PACKAGE_JSON_FILE)
        if os.path.isfile(manifest_path):
            return manifest_path
    return None


def load_spec(initial_cwd: str, settings: BrokerSettings) -> LoadSpecResult:
    """Locate the package manager declared by the nearest project.

    Directories named node_modules are skipped during the walk so that a
    dependency's manifest never decides for the project.

    Returns:
        NoProject, NoSpec or Found; each carries the env overlay read next
        to the manifest (empty for NoProject).

    Raises:
        UsageError: If the manifest is not a JSON object, or its
            packageManager field is invalid.
    """
    manifest_path = _find_manifest(initial_cwd)
    if manifest_path is None:
        return NoProject(target=os.path.join(os.path.abspath(initial_cwd), Constants.PACKAGE_JSON_FILE))

    source = os.path.relpath(manifest_path, os.path.abspath(initial_cwd))
    try:
        with open(manifest_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError):
        data = None
    if not isinstance(data, dict):
        raise UsageError(f"Invalid package.json in {source}")

    env = read_env_overlay(os.path.dirname(manifest_path), settings.env_file)

    raw_spec = data.get(Constants.PACKAGE_MANAGER_FIELD)
    if raw_spec is None:
        return NoSpec(target=manifest_path, env=env)

    allow_unsafe = settings.allow_unsafe_custom_urls or (
        env.get(Constants.ENV_ENABLE_UNSAFE_CUSTOM_URLS) == "1"
    )
    return Found(
        spec=parse_spec(raw_spec, source, enforce_exact_version=True, allow_unsafe_urls=allow_unsafe),
        manifest_path=manifest_path,
        env=env,
    )


def needs_fallback(result: LoadSpecResult, package_manager: str) -> bool:
    """True unless the project pins package_manager itself."""
    return not (isinstance(result, Found) and result.spec.name == package_manager)


def select_descriptor(
    result: LoadSpecResult,
    fallback: Locator,
    settings: BrokerSettings,
    transparent: bool = False,
) -> Descriptor:
    """Pick the descriptor to run given a project lookup result.

    Outside a project, or in a project without a packageManager field, the
    fallback locator is used as-is. A project pinned to another package
    manager is an error unless the command is transparent or strict mode is
    off, in which case the fallback wins.

    Raises:
        UsageError: On a package manager mismatch in strict mode.
    """
    if isinstance(result, (NoProject, NoSpec)):
        return Descriptor(name=fallback.name, range=fallback.reference)

    if result.spec.name == fallback.name:
        return result.spec

    if transparent or not settings.enable_strict:
        logger.debug(
            "Project declares %s; running %s anyway",
            result.spec,
            fallback,
        )
        return Descriptor(name=fallback.name, range=fallback.reference)

    raise UsageError(
        f"This project is configured to use {result.spec.name} because {result.manifest_path} "
        f"has a \"packageManager\" field"
    )


def find_project_spec(
    initial_cwd: str,
    fallback: Locator,
    settings: BrokerSettings,
    transparent: bool = False,
) -> Descriptor:
    """Look up the project in initial_cwd and pick the descriptor to run."""
    return select_descriptor(load_spec(initial_cwd, settings), fallback, settings, transparent)
