"""Command line entry point.

Usage:
    python -m copytrade_replicator run [--dry-run | --live] [-v]
    python -m copytrade_replicator config
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal

from copytrade_replicator.config import Settings, get_settings
from copytrade_replicator.service import CopyTradingService

logger = logging.getLogger(__name__)


def setup_logging(settings: Settings, *, verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.get_logging_level(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def run_service(settings: Settings, *, dry_run: bool | None) -> None:
    service = CopyTradingService(settings, dry_run=dry_run)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows).
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(service.stop()))
    await service.run()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="copytrade_replicator",
        description="Replicate trades of tracked wallets for subscribed users",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run pollers and replication until stopped")
    mode = run_parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", dest="dry_run", action="store_true", default=None)
    mode.add_argument("--live", dest="dry_run", action="store_false")
    run_parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    subparsers.add_parser("config", help="Print the effective settings with secrets redacted")

    args = parser.parse_args(argv)
    settings = get_settings()

    if args.command == "config":
        print(json.dumps(settings.redacted_summary(), indent=2))
        return 0

    setup_logging(settings, verbose=args.verbose)
    dry_run = settings.dry_run if args.dry_run is None else args.dry_run
    if not dry_run:
        logger.error("Live trading needs a TradeExecutor; run the service from code to supply one")
        return 2

    logger.info("Effective settings: %s", settings.redacted_summary())
    try:
        asyncio.run(run_service(settings, dry_run=dry_run))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
