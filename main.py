"""
Command-line entry point.

Computes the free slots of a working-hours window, or runs the offline
booking demo.

Usage:
    python main.py slots --start 09:00 --end 17:00 --duration 60 --booked 11:00
    python main.py demo --scenario declined
"""

import argparse
import logging
import sys
from typing import Optional

from sanaalink.config import settings
from sanaalink.scheduling.slots import effective_duration, generate_slots

logger = logging.getLogger(__name__)


def _run_slots(args: argparse.Namespace) -> int:
    """Print one slot per line; exit status 1 when nothing is free."""
    try:
        slots = generate_slots(
            args.start, args.end, effective_duration(args.duration), args.booked or []
        )
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    if not slots:
        print("No slots available on this date.", file=sys.stderr)
        return 1
    print("\n".join(slots))
    return 0


def _run_demo(args: argparse.Namespace) -> int:
    """Start the offline console demo (no API keys required)."""
    from console_demo import main as demo_main

    demo_main(["--scenario", args.scenario])
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=settings.app_name.lower())
    commands = parser.add_subparsers(dest="command", required=True)

    slots = commands.add_parser("slots", help="List free slots in a working-hours window")
    slots.add_argument("--start", required=True, help="Window start, HH:MM")
    slots.add_argument("--end", required=True, help="Window end, HH:MM")
    slots.add_argument(
        "--duration", type=int, default=None,
        help=f"Slot length in minutes (default {settings.scheduling.default_service_duration_min})",
    )
    slots.add_argument(
        "--booked", action="append", metavar="HH:MM", help="Start time already booked; repeatable"
    )
    slots.set_defaults(handler=_run_slots)

    demo = commands.add_parser("demo", help="Run the offline booking demo")
    demo.add_argument("--scenario", choices=["paid", "declined", "rejected"], default="paid")
    demo.set_defaults(handler=_run_demo)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger.debug("Running command %s", args.command)
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
