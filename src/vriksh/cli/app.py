"""
vriksh command line.

Usage:
    vriksh <command> [args]
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from vriksh import __version__
from vriksh.config import get_settings
from vriksh.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vriksh", description="Run hands-on labs from YAML specs")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    validate_parser = subparsers.add_parser("validate", help="Validate a lab file")
    validate_parser.add_argument("lab_file", help="Path to lab YAML file")
    validate_parser.add_argument("--strict", action="store_true", help="Treat warnings as errors")

    run_parser = subparsers.add_parser("run", help="Run a lab end to end")
    run_parser.add_argument("lab_file", help="Path to lab YAML file")
    run_parser.add_argument(
        "--backend",
        choices=["docker", "memory"],
        help="Execution substrate (default from VRIKSH_BACKEND)",
    )
    run_parser.add_argument(
        "--auto-finish",
        type=float,
        metavar="SECONDS",
        help="Finish automatically after the lab has been ready this long",
    )
    run_parser.add_argument(
        "--ready-timeout",
        type=float,
        metavar="SECONDS",
        help="Abort the run if it is still ready after this long",
    )

    logs_parser = subparsers.add_parser("logs", help="Show the event log of a run")
    logs_parser.add_argument("--id", dest="run_id", help="Run id (default: most recent run)")
    logs_parser.add_argument("--payload", action="store_true", help="Include event payloads")

    status_parser = subparsers.add_parser("status", help="List recent runs")
    status_parser.add_argument("--limit", type=int, default=10, help="Number of runs to show")

    teardown_parser = subparsers.add_parser(
        "teardown", help="Force teardown of a run's resources from its ledger records"
    )
    teardown_parser.add_argument("--id", dest="run_id", help="Run id (default: most recent run)")
    teardown_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    level = logging.DEBUG if args.debug or settings.debug else settings.log_level
    configure_logging(level, json_output=settings.log_json)

    if args.command == "validate":
        from vriksh.cli.validate import validate_command

        sys.exit(validate_command(args.lab_file, strict=args.strict))

    if args.command == "run":
        from vriksh.cli.run import run_command

        sys.exit(
            run_command(
                args.lab_file,
                backend=args.backend,
                auto_finish=args.auto_finish,
                ready_timeout=args.ready_timeout,
            )
        )

    if args.command == "logs":
        from vriksh.cli.logs import logs_command

        sys.exit(logs_command(args.run_id, show_payload=args.payload))

    if args.command == "status":
        from vriksh.cli.status import status_command

        sys.exit(status_command(limit=args.limit))

    if args.command == "teardown":
        from vriksh.cli.teardown import teardown_command

        sys.exit(teardown_command(args.run_id, yes=args.yes))

    parser.print_help()
    sys.exit(0)


if __name__ == "__main__":
    main()
