"""Argument parsing for the pmpin command line."""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional, Tuple

from . import __version__
from .constants import Constants

USAGE = "pmpin [options] <binary>[@version] [args...] | pmpin cache clean"


def build_parser() -> argparse.ArgumentParser:
    """Parser for the options placed before the binary name."""
    parser = argparse.ArgumentParser(
        prog="pmpin",
        usage=USAGE,
        description=(
            "pmpin - runs the package manager version a project declares in its "
            "package.json, installing it on first use"
        ),
        epilog="Binaries: " + ", ".join(["npm", "npx", "pnpm", "pnpx", "yarn", "yarnpkg"]),
        add_help=True,
    )
    parser.add_argument("-v", "--version",
                        action="version",
                        version=f"pmpin {__version__}")
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help=f"Set the logging level (default: WARNING, or {Constants.ENV_LOG_LEVEL})",
                        action="store",
                        type=str.upper,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    return parser


def split_argv(argv: List[str]) -> Tuple[List[str], List[str]]:
    """Split argv into pmpin's own options and the command to run.

    Everything from the first token that is not an option belongs to the
    command, so ``pmpin yarn --version`` asks yarn for its version.
    """
    index = 0
    while index < len(argv) and argv[index].startswith("-"):
        if argv[index] == "--":
            return argv[:index], argv[index + 1:]
        if argv[index] == "--loglevel" and index + 1 < len(argv):
            index += 1
        index += 1
    return argv[:index], argv[index:]


def parse_args(argv: Optional[List[str]] = None) -> Tuple[argparse.Namespace, List[str]]:
    """Parse the command line.

    Returns:
        (options, command) where command is ``[binary[@version], *args]``.
    """
    raw = list(sys.argv[1:] if argv is None else argv)
    own, command = split_argv(raw)
    options = build_parser().parse_args(own)
    return options, command
