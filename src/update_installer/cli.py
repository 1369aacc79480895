"""
Command-line front end for the update installer.

Usage:
    update-installer [--config PATH] [--root DIR] [--log-level LEVEL] [--debug]
        update --package PATH
        rollback
        status
        history [--limit N]

Exit status: 0 when an attempt ends done or rolled back, 1 when it aborts,
2 for usage or configuration errors.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any

import yaml
from pydantic import ValidationError

from update_installer import __version__
from update_installer.config import InstallerConfig, load_config
from update_installer.logging import get_logger, setup_logging
from update_installer.updates.rollback import can_rollback
from update_installer.updates.state_machine import UpdateController

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="update-installer",
        description="Install versioned update packages with rollback to the last known good version",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--root",
        type=str,
        help="Managed root directory (overrides configuration)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    update = subparsers.add_parser("update", help="Install an update package")
    update.add_argument(
        "--package",
        required=True,
        help="Path to the update package directory",
    )

    subparsers.add_parser(
        "rollback", help="Point the active version at the last known good version"
    )
    subparsers.add_parser("status", help="Show version pointers and installed versions")

    history = subparsers.add_parser("history", help="Show the install history")
    history.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Number of most recent entries to show (0 for all)",
    )

    return parser


def _config_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Translate command-line options into configuration overrides."""
    overrides: dict[str, Any] = {}

    if args.root:
        overrides["root"] = args.root

    if args.log_level:
        overrides["logging"] = {"level": args.log_level}

    if args.debug:
        overrides["logging"] = {"level": "debug"}

    return overrides


async def _run_update(controller: UpdateController, package: str) -> int:
    try:
        result = await controller.update(package)
    except Exception as exc:
        print(f"UPDATE FAILED: {getattr(exc, 'message', exc)}")
        return EXIT_FAILED

    if result.state == "rolled_back":
        print(f"UPDATE ROLLED BACK: {result.message}")
    else:
        print(f"UPDATE OK: version={result.version}")
        print(f"previous={result.previous_version}")
    return EXIT_OK


async def _run_rollback(controller: UpdateController) -> int:
    try:
        result = await controller.rollback()
    except Exception as exc:
        print(f"ROLLBACK FAILED: {getattr(exc, 'message', exc)}")
        return EXIT_FAILED

    print(f"ROLLBACK: {result.message}")
    return EXIT_OK


def _show_status(controller: UpdateController) -> int:
    status = controller.get_status()
    status["rollback_available"] = can_rollback(controller.store)
    print(json.dumps(status, indent=2))
    return EXIT_OK


def _show_history(controller: UpdateController, limit: int) -> int:
    entries = controller.audit.entries()
    if limit > 0:
        entries = entries[-limit:]
    for entry in entries:
        print(f"[{entry.timestamp}] {entry.message}")
    return EXIT_OK


def run(args: argparse.Namespace, config: InstallerConfig) -> int:
    """
    Execute a parsed command against a loaded configuration.

    Returns:
        Process exit status.
    """
    controller = UpdateController.from_config(config)

    try:
        if args.command == "update":
            return asyncio.run(_run_update(controller, args.package))
        if args.command == "rollback":
            return asyncio.run(_run_rollback(controller))
        if args.command == "status":
            return _show_status(controller)
        if args.command == "history":
            return _show_history(controller, args.limit)
    finally:
        controller.close()

    return EXIT_USAGE


def main(argv: list[str] | None = None) -> int:
    """
    Entry point of the update-installer command.

    Args:
        argv: Command-line arguments. If None, uses sys.argv.

    Returns:
        Process exit status.
    """
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config, overrides=_config_overrides(args))
    except (FileNotFoundError, ValidationError, yaml.YAMLError) as exc:
        print(f"CONFIG ERROR: {exc}")
        return EXIT_USAGE

    setup_logging(config.logging)
    logger.debug("Loaded configuration", extra={"root": config.root})

    return run(args, config)


if __name__ == "__main__":
    raise SystemExit(main())
