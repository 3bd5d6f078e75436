"""The binary's version and the --version command-line flag."""

from __future__ import annotations

import argparse
import enum
import json
import sys

VERSION = "UNKNOWN"

_RAW = "raw"
_TRUE_STRINGS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_STRINGS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


class VersionValue(enum.IntEnum):
    """What the --version flag asks for."""

    FALSE = 0
    TRUE = 1
    RAW = 2


def parse_version_value(text: str) -> VersionValue:
    """Parse a --version value: "raw" or a boolean."""
    if text == _RAW:
        return VersionValue.RAW
    if text in _TRUE_STRINGS:
        return VersionValue.TRUE
    if text in _FALSE_STRINGS:
        return VersionValue.FALSE
    raise ValueError(f"invalid version flag value: {text!r}")


parse_version_value.__name__ = "version"


def format_version_value(value: VersionValue) -> str:
    """Render a flag value the way it is written on the command line."""
    if value == VersionValue.RAW:
        return _RAW
    return "true" if value == VersionValue.TRUE else "false"


def add_version_flag(parser: argparse.ArgumentParser) -> None:
    """Add --version; a bare "--version" means "--version=true"."""
    parser.add_argument(
        "--version",
        nargs="?",
        type=parse_version_value,
        const=VersionValue.TRUE,
        default=VersionValue.FALSE,
        metavar="true|false|raw",
        help="Print version information and quit",
    )


def print_and_exit_if_requested(value: VersionValue) -> None:
    """Print the version and exit if the flag asked for it."""
    if value == VersionValue.RAW:
        print(json.dumps(VERSION))
        sys.exit(0)
    if value == VersionValue.TRUE:
        print(f"Kube-DNS {VERSION}")
        sys.exit(0)