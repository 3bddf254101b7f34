"""Process launcher: hands control to an installed package manager.

By default the binary runs as a child process sharing our stdio, and its
exit code becomes ours. ``PMPIN_LAUNCH_MODE=exec`` replaces the broker
process instead, where the platform supports it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from .constants import Constants
from .errors import AssertionFailure, UsageError
from .installer import is_tarball, url_basename
from .models import InstallInfo
from .settings import BrokerSettings

logger = logging.getLogger(__name__)

BROKER_ROOT = os.path.dirname(os.path.abspath(__file__))


def _manifest_bin(location: str, binary_name: str) -> Optional[str]:
    """Look binary_name up in the ``bin`` field of an installed package.json."""
    manifest_path = os.path.join(location, Constants.PACKAGE_JSON_FILE)
    try:
        with open(manifest_path, "r", encoding="utf-8") as fh:
            manifest = json.load(fh)
    except (OSError, ValueError):
        return None
    if not isinstance(manifest, dict):
        return None
    bins = manifest.get("bin")
    if isinstance(bins, str):
        return bins
    if isinstance(bins, dict):
        value = bins.get(binary_name)
        return value if isinstance(value, str) else None
    return None


def resolve_bin_path(info: InstallInfo, binary_name: str) -> str:
    """Return the file implementing binary_name inside the install.

    Raises:
        AssertionFailure: If the install does not provide binary_name.
    """
    bins = info.spec.bin
    relative: Optional[str] = None
    if isinstance(bins, dict):
        relative = bins.get(binary_name)
    elif binary_name in bins and not is_tarball(info.spec.url):
        relative = url_basename(info.spec.url)

    if relative is None:
        relative = _manifest_bin(info.location, binary_name)
    if not relative:
        raise AssertionFailure(f"Unable to locate path for bin '{binary_name}'")
    return os.path.normpath(os.path.join(info.location, relative))


def build_command(info: InstallInfo, binary_name: str, args: List[str], settings: BrokerSettings) -> List[str]:
    """Return ``[interpreter, bin path, *args]`` for the install."""
    bin_path = resolve_bin_path(info, binary_name)
    interpreter = settings.resolve_node()
    if not interpreter:
        raise UsageError(
            f"Couldn't find a Node.js interpreter to run {binary_name}; "
            f"install node or set {Constants.ENV_NODE}"
        )
    return [interpreter, bin_path, *args]


def build_environment(base: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    env = dict(os.environ if base is None else base)
    env[Constants.ENV_ROOT] = BROKER_ROOT
    return env


def _ignore_interrupt(signum, frame) -> None:
    """The child shares our process group and receives the interrupt itself."""


@contextmanager
def interrupts_delegated() -> Iterator[None]:
    """Ignore SIGINT while a child owns the terminal, then restore the handler."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = signal.signal(signal.SIGINT, _ignore_interrupt)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def exit_code_of(returncode: Optional[int]) -> int:
    """Map a child return code to ours; deaths by signal become 1."""
    if returncode is None or returncode < 0:
        return 1
    return returncode


async def spawn(command: List[str], env: Dict[str, str]) -> int:
    """Run command as a child process and return its exit code."""
    with interrupts_delegated():
        process = await asyncio.create_subprocess_exec(*command, env=env)
        returncode = await process.wait()
    logger.debug("%s exited with %s", os.path.basename(command[1]), returncode)
    return exit_code_of(returncode)


def exec_takeover(command: List[str], env: Dict[str, str]) -> None:
    """Replace the current process with command; does not return on success."""
    logging.shutdown()
    os.execve(command[0], command, env)


async def run_version(
    info: InstallInfo,
    binary_name: str,
    args: List[str],
    settings: BrokerSettings,
) -> int:
    """Run binary_name from an installed package manager.

    Args:
        info: Installed package manager.
        binary_name: Binary to run, e.g. ``yarn`` or ``npx``.
        args: Arguments passed through unchanged.
        settings: Broker settings (interpreter, launch mode).

    Returns:
        The binary's exit code.

    Raises:
        AssertionFailure: If the install doesn't provide binary_name.
    """
    command = build_command(info, binary_name, args, settings)
    env = build_environment()
    logger.debug("Running %s with %s", info.locator, command)

    if settings.launch_mode == Constants.LAUNCH_MODE_EXEC and hasattr(os, "execve") and os.name == "posix":
        exec_takeover(command, env)
    return await spawn(command, env)
