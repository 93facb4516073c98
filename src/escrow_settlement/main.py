"""Command-line entry point for the escrow settlement core.

Commands:
    init-db        Create tables (development and tests; no migrations).
    sweep          Run the settlement sweep on its interval until interrupted.
    sweep --once   Run a single sweep pass and print the report.
    generate-key   Print a fresh 256-bit field encryption key (hex).

Run with:
    escrow-settlement sweep --once
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
from contextlib import suppress

from escrow_settlement.bootstrap import SettlementCore
from escrow_settlement.config import Settings, get_settings
from escrow_settlement.infrastructure.scheduler import SweepScheduler
from escrow_settlement.logging_config import get_logger, setup_logging
from escrow_settlement.security.encryption import generate_key


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="escrow-settlement",
        description="Escrow lifecycle and settlement core",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create database tables.")

    sweep = commands.add_parser("sweep", help="Run the settlement sweep.")
    sweep.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass instead of the interval scheduler.",
    )
    sweep.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between passes (defaults to SWEEP_INTERVAL_SECONDS).",
    )

    commands.add_parser("generate-key", help="Print a new field encryption key.")
    return parser


async def _init_db(settings: Settings) -> None:
    core = SettlementCore.from_settings(settings)
    try:
        await core.init_db()
    finally:
        await core.aclose()


async def _sweep(settings: Settings, once: bool, interval: int | None) -> None:
    logger = get_logger(__name__)
    core = SettlementCore.from_settings(settings)
    try:
        if once:
            report = await core.sweep_once()
            print(json.dumps(report.as_dict()))
            return
        if not settings.sweep_enabled:
            logger.warning("sweep.disabled")
            return

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # Not available on every platform (e.g. Windows event loops).
            with suppress(NotImplementedError):
                loop.add_signal_handler(sig, stop.set)

        scheduler = SweepScheduler(core.sweeper, interval or settings.sweep_interval_seconds)
        await scheduler.run_until(stop)
    finally:
        await core.aclose()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "generate-key":
        print(generate_key())
        return 0

    settings = get_settings()
    setup_logging(log_level=settings.app_log_level, json_logs=not settings.is_development)
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, command=args.command)

    if args.command == "init-db":
        asyncio.run(_init_db(settings))
    elif args.command == "sweep":
        asyncio.run(_sweep(settings, args.once, args.interval))

    logger.info("app.stopped", command=args.command)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
