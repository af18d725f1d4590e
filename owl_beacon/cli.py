"""Command-line interface for owl-beacon."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from .app import BeaconApp
from .commands import CommandDispatcher, register_builtin_commands
from .config import default_config_path, load_config, save_config
from .reboot import RebootTimer

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    default_path = default_config_path()
    parser = argparse.ArgumentParser(
        prog="owl-beacon", description="MQTT device agent with remote commands"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=default_path,
        help=f"Path to configuration file (default: {default_path})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("start", help="Start the owl-beacon agent")

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    subparsers.add_parser(
        "init-config", help="Write the resolved configuration to the config path"
    )

    dispatch_parser = subparsers.add_parser(
        "dispatch", help="Run a command line locally and print the response"
    )
    dispatch_parser.add_argument("line", nargs="+", help="Command and arguments")

    return parser


def _local_dispatch(line: str, max_response_size: int) -> str:
    dispatcher = CommandDispatcher(max_response_size=max_response_size)

    def _no_restart() -> None:
        LOGGER.info("Local dispatch: restart suppressed")

    register_builtin_commands(dispatcher, RebootTimer(restart=_no_restart))
    dispatcher.seal()
    return dispatcher.dispatch(line)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)

    if args.command == "start":
        BeaconApp.start(config)
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                print(f"{key} = {value}")
            print()
        return 0

    if args.command == "init-config":
        save_config(config)
        print(f"Configuration written to {config.path!s}")
        return 0

    if args.command == "dispatch":
        print(_local_dispatch(" ".join(args.line), config.commands.max_response_size))
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
