"""
argparse helpers shared by the command modules.

Global flags live on a parent parser attached to every subcommand with
SUPPRESS defaults, so they are accepted before or after the command name
and a subcommand never overwrites a value given earlier.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from lkcli.core.errors import InputError
from lkcli.core.strings import parse_duration

GLOBAL_DEFAULTS: dict[str, Any] = {
    "url": "",
    "api_key": "",
    "api_secret": "",
    "dev": False,
    "project": "",
    "subdomain": "",
    "config": "",
    "curl": False,
    "verbose": False,
}


def global_options() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    group = parent.add_argument_group("global options")
    s = argparse.SUPPRESS
    group.add_argument("--url", default=s, help="URL of the LiveKit server (env LIVEKIT_URL)")
    group.add_argument("--api-key", default=s, help="API key (env LIVEKIT_API_KEY)")
    group.add_argument("--api-secret", default=s, help="API secret (env LIVEKIT_API_SECRET)")
    group.add_argument("--dev", action="store_true", default=s, help="use developer credentials for a local server")
    group.add_argument("--project", default=s, help="name of a configured project")
    group.add_argument("--subdomain", default=s, help="subdomain of a configured project")
    group.add_argument("--config", default=s, help="path to the CLI configuration file")
    group.add_argument("--curl", action="store_true", default=s, help="print curl commands instead of sending requests")
    group.add_argument("--verbose", action="store_true", default=s, help="verbose output")
    return parent


GLOBAL_PARENT = global_options()


def apply_global_defaults(args: argparse.Namespace) -> argparse.Namespace:
    for name, value in GLOBAL_DEFAULTS.items():
        if not hasattr(args, name):
            setattr(args, name, value)
    return args


def add_group(subparsers, name: str, help: str, aliases: list[str] | None = None):
    """A command with children of its own. Returns its subparsers action."""
    parser = subparsers.add_parser(name, help=help, description=help, aliases=aliases or [], parents=[GLOBAL_PARENT])
    parser.set_defaults(handler=None, command_parser=parser)
    return parser.add_subparsers(metavar="COMMAND")


def add_command(subparsers, name: str, handler, help: str, aliases: list[str] | None = None) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(name, help=help, description=help, aliases=aliases or [], parents=[GLOBAL_PARENT])
    parser.set_defaults(handler=handler, command_parser=parser)
    return parser


def add_json_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", "-j", action="store_true", help="output as JSON")


# Argument types


def duration(value: str) -> float:
    """Go style duration ("30s", "1h10m", "250ms") in seconds."""
    try:
        return parse_duration(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid duration: {value}") from e


def csv_list(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def key_value(value: str) -> tuple[str, str]:
    key, sep, val = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {value}")
    return key, val


def load_json_request(path: str | None) -> dict[str, Any]:
    """Request body from a JSON file, or `-` for stdin. No path gives an empty body."""
    if not path:
        return {}
    try:
        if path == "-":
            data = json.load(sys.stdin)
        else:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise InputError(f"could not read request file {path}: {e.strerror}") from e
    except json.JSONDecodeError as e:
        raise InputError(f"could not parse request file {path}: {e}") from e
    if not isinstance(data, dict):
        raise InputError(f"request file {path} must hold a JSON object")
    return data
