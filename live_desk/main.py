#!/usr/bin/env python3
"""
Live Desk - terminal front-end for the simulated trading engine.

Usage:
    python -m live_desk.main --base-url http://localhost:18080 --levels 10
    live-desk --subscribe AAPL --subscribe MSFT

Controls:
    q      - Quit
    o      - Focus the command line
    escape - Leave the command line

Commands:
    buy AAPL 100 150.25   limit buy (omit the price for a market order)
    sell AAPL 50
    cancel 7              by engine order id, or cancel c3 by client handle
    sub MSFT [trades] [quotes] [bars]
    unsub MSFT
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .config import DeskConfig, load_config

logger = logging.getLogger(__name__)


async def run_headless(desk) -> None:
    """Log each published view instead of drawing the TUI."""
    while True:
        view = await desk.snapshot_queue.get()
        if view.stale:
            logger.warning("%s stale (%s, %d failures)", view.feed.value, view.error.value, view.failures)
        elif not view.changes.is_empty:
            logger.info(
                "%s gen=%d +%d -%d ~%d",
                view.feed.value, view.generation,
                len(view.changes.added), len(view.changes.removed), len(view.changes.updated),
            )


async def main(config: DeskConfig, symbols: list[str], headless: bool = False) -> None:
    """Main entry point - runs the desk and UI concurrently."""

    # Import here to avoid slow startup for --help
    from .datafeed.client import FeedClient
    from .desk import TradingDesk
    from .errors import DeskError

    async with FeedClient(config.base_url, config.book_levels) as client:
        desk = TradingDesk(client, config)
        desk.start()

        for symbol in symbols:
            try:
                await desk.subscribe(symbol)
            except DeskError as e:
                logger.error("Subscribe %s failed: %s", symbol, e.message)

        try:
            if headless:
                await run_headless(desk)
            else:
                from .ui.desk_view import run_ui
                await run_ui(desk)
        finally:
            await desk.stop()


def cli() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Live Desk - order book, ticks, trades and orders from the trading engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    live-desk
    live-desk --base-url http://engine:18080 --levels 20
    live-desk --subscribe AAPL --headless --log-level DEBUG
        """
    )

    parser.add_argument(
        "--config",
        default=None,
        help="Path to JSON config (default: $LIVE_DESK_CONFIG_PATH or ./live_desk.json if present)"
    )

    parser.add_argument(
        "--base-url",
        default=None,
        help="Trading engine base URL (default: http://localhost:18080)"
    )

    parser.add_argument(
        "--levels",
        type=int,
        default=None,
        help="Order book levels per side (default: 10)"
    )

    parser.add_argument(
        "--subscribe",
        action="append",
        default=[],
        metavar="SYMBOL",
        help="Subscribe to market data for SYMBOL on startup (repeatable)"
    )

    parser.add_argument(
        "--headless",
        action="store_true",
        help="Log view-model changes instead of drawing the terminal UI"
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )

    parser.add_argument(
        "--log-file",
        default="live_desk.log",
        help="Log destination while the terminal UI is running (default: live_desk.log)"
    )

    args = parser.parse_args()

    # The TUI owns the terminal, so logs go to a file unless headless
    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        filename=None if args.headless else args.log_file,
    )

    config = load_config(args.config)
    overrides = {}
    if args.base_url:
        overrides["base_url"] = args.base_url
    if args.levels:
        overrides["book_levels"] = args.levels
    if overrides:
        config = DeskConfig(**{**config.model_dump(), **overrides})

    try:
        asyncio.run(main(config, args.subscribe, headless=args.headless))
    except KeyboardInterrupt:
        print("\nShutdown requested.")
        sys.exit(0)


if __name__ == "__main__":
    cli()
