"""Runtime settings for one broker invocation.

All ambient configuration is read from the environment exactly once, by
``BrokerSettings.from_env``, and then passed explicitly to every component.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from typing import Mapping, Optional

from .constants import Constants


def _flag(environ: Mapping[str, str], name: str, default: bool) -> bool:
    """Read a 0/1 style flag; anything but "0" enables an opt-out flag."""
    value = environ.get(name)
    if value is None:
        return default
    if default:
        return value.strip() != "0"
    return value.strip() == "1"


def default_install_root(environ: Mapping[str, str]) -> str:
    """Locate the shared cache directory.

    Priority: PMPIN_HOME, then XDG_CACHE_HOME, then LOCALAPPDATA, then the
    platform default under the home directory.
    """
    home = environ.get(Constants.ENV_HOME)
    if home:
        return home
    base = environ.get("XDG_CACHE_HOME") or environ.get("LOCALAPPDATA")
    if not base:
        suffix = os.path.join("AppData", "Local") if os.name == "nt" else ".cache"
        base = os.path.join(os.path.expanduser("~"), suffix)
    return os.path.join(base, Constants.CACHE_SUBFOLDER)


@dataclass
class BrokerSettings:
    """Configuration for the broker."""

    install_root: str = ""
    enable_network: bool = True
    default_to_latest: bool = True
    enable_strict: bool = True
    allow_unsafe_custom_urls: bool = False
    integrity_keys: Optional[str] = None
    integrity_strict: bool = False
    npm_registry: Optional[str] = None
    npm_token: Optional[str] = None
    npm_username: Optional[str] = None
    npm_password: Optional[str] = None
    node_path: Optional[str] = None
    launch_mode: str = Constants.LAUNCH_MODE_SPAWN
    env_file: Optional[str] = None
    definitions_path: Optional[str] = None
    http_timeout: int = Constants.REQUEST_TIMEOUT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BrokerSettings":
        """Create settings from environment variables.

        Args:
            environ: Mapping to read from; defaults to ``os.environ``.

        Returns:
            BrokerSettings instance.
        """
        env = os.environ if environ is None else environ

        launch_mode = (env.get(Constants.ENV_LAUNCH_MODE) or Constants.LAUNCH_MODE_SPAWN).strip().lower()
        if launch_mode not in (Constants.LAUNCH_MODE_SPAWN, Constants.LAUNCH_MODE_EXEC):
            launch_mode = Constants.LAUNCH_MODE_SPAWN

        try:
            timeout = int(env.get(Constants.ENV_HTTP_TIMEOUT, Constants.REQUEST_TIMEOUT))
        except ValueError:
            timeout = Constants.REQUEST_TIMEOUT

        registry = env.get(Constants.ENV_NPM_REGISTRY) or None
        if registry:
            registry = registry.rstrip("/")

        return cls(
            install_root=default_install_root(env),
            enable_network=_flag(env, Constants.ENV_ENABLE_NETWORK, True),
            default_to_latest=_flag(env, Constants.ENV_DEFAULT_TO_LATEST, True),
            enable_strict=_flag(env, Constants.ENV_ENABLE_STRICT, True),
            allow_unsafe_custom_urls=_flag(env, Constants.ENV_ENABLE_UNSAFE_CUSTOM_URLS, False),
            integrity_keys=env.get(Constants.ENV_INTEGRITY_KEYS),
            integrity_strict=_flag(env, Constants.ENV_INTEGRITY_STRICT, False),
            npm_registry=registry,
            npm_token=env.get(Constants.ENV_NPM_TOKEN) or None,
            npm_username=env.get(Constants.ENV_NPM_USERNAME) or None,
            npm_password=env.get(Constants.ENV_NPM_PASSWORD) or None,
            node_path=env.get(Constants.ENV_NODE) or None,
            launch_mode=launch_mode,
            env_file=env.get(Constants.ENV_ENV_FILE),
            definitions_path=env.get(Constants.ENV_DEFINITIONS) or None,
            http_timeout=timeout,
        )

    @property
    def npm_registry_url(self) -> str:
        return self.npm_registry or Constants.REGISTRY_URL_NPM

    @property
    def uses_custom_npm_registry(self) -> bool:
        return bool(self.npm_registry) and self.npm_registry != Constants.REGISTRY_URL_NPM

    @property
    def skip_integrity_check(self) -> bool:
        """Signature checks are skipped when the keys variable is 0, false or empty."""
        if self.integrity_keys is None:
            return False
        return self.integrity_keys.strip().lower() in ("0", "false", "")

    def resolve_node(self) -> Optional[str]:
        """Absolute path of the interpreter used to run package manager entry points.

        PMPIN_NODE may be a bare command name; it is looked up on PATH like
        the default ``node``. None when nothing executable is found.
        """
        found = shutil.which(self.node_path or "node")
        if found and not os.path.isabs(found):
            found = os.path.abspath(found)
        return found
