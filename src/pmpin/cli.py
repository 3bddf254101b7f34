"""Command line entry point: ``pmpin <binary>[@version] [args...]``."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import sys
from typing import Dict, List, Optional

from .args import USAGE, parse_args
from .common.http_client import HttpClient
from .common.logging_utils import configure_logging, extra_context, is_debug_enabled
from .config import binary_entries, load_definitions
from .constants import ExitCodes
from .engine import Engine
from .errors import PmpinError, UsageError
from .installer import Installer
from .models import Definition, PackageManagerRequest
from .project import apply_env_overlay, load_spec
from .settings import BrokerSettings

logger = logging.getLogger(__name__)

_REQUEST_PATTERN = re.compile(r"^([^@]*)(?:@(.*))?$")


def parse_package_manager_request(
    parameter: str, definitions: Dict[str, Definition]
) -> Optional[PackageManagerRequest]:
    """Turn ``yarn`` or ``yarn@3.6.0`` into a request, or None if unknown."""
    match = _REQUEST_PATTERN.match(parameter)
    if match is None:
        return None
    binary_name, binary_version = match.group(1), match.group(2)
    package_manager = binary_entries(definitions).get(binary_name)
    if package_manager is None:
        return None
    return PackageManagerRequest(
        package_manager=package_manager,
        binary_name=binary_name,
        binary_version=binary_version or None,
    )


def clean_cache(settings: BrokerSettings) -> int:
    installer = Installer(settings, HttpClient(settings))
    installer.clean()
    sys.stdout.write(f"Removed {installer.install_root}\n")
    return ExitCodes.SUCCESS.value


async def run_request(command: List[str], cwd: str) -> int:
    """Run the binary named by command[0] with the remaining arguments."""
    settings = BrokerSettings.from_env()

    if command[0] == "cache":
        if command[1:] != ["clean"]:
            raise UsageError(f"Unknown cache command; usage: {USAGE}")
        return clean_cache(settings)

    definitions = load_definitions(settings.definitions_path)
    request = parse_package_manager_request(command[0], definitions)
    if request is None:
        raise UsageError(f"Unknown command '{command[0]}'; usage: {USAGE}")

    project = load_spec(cwd, settings)
    if project.env:
        apply_env_overlay(project.env)
        settings = BrokerSettings.from_env()

    if is_debug_enabled(logger):
        logger.debug(
            "Dispatching request",
            extra=extra_context(
                event="function_entry",
                component="cli",
                action="run_request",
                package_manager=request.package_manager,
                binary=request.binary_name,
                version=request.binary_version,
            ),
        )

    async with HttpClient(settings) as http:
        engine = Engine(settings, http, definitions)
        return await engine.execute_package_manager_request(request, command[1:], cwd, project)


def run(argv: Optional[List[str]] = None) -> int:
    """Parse argv, run the request and return the process exit code."""
    options, command = parse_args(argv)
    configure_logging(options.LOG_LEVEL)

    if not command:
        sys.stderr.write(f"Usage: {USAGE}\n")
        return ExitCodes.USAGE_ERROR.value

    try:
        return asyncio.run(run_request(command, os.getcwd()))
    except UsageError as exc:
        sys.stderr.write(f"Usage Error: {exc}\n")
        return exc.exit_code.value
    except PmpinError as exc:
        sys.stderr.write(f"Error: {exc}\n")
        return exc.exit_code.value
    except KeyboardInterrupt:
        return 130
    except Exception:  # pylint: disable=broad-exception-caught
        logger.exception("Internal error")
        return ExitCodes.USAGE_ERROR.value


def main() -> None:
    """Console script entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
