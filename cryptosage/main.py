#!/usr/bin/env python3
"""
CryptoSage - terminal crypto market dashboard.

Usage:
    python -m cryptosage.main BTC --interval 1D

    Or via the installed script:
    cryptosage ETH --interval LIVE

Controls:
    q - Quit
    r - Retry chart load
    l - Toggle LIVE chart
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional, Sequence

from .config import DEFAULT_HEATMAP_TOP, SageConfig
from .datafeed.intervals import ChartInterval, is_supported_symbol
from .errors import ConfigurationError, StorageError
from .store import KeyValueStore


async def main(config: SageConfig, symbol: str, interval: ChartInterval, top_count: int) -> None:
    """Main entry point - runs the dashboard until quit."""

    # Import here to avoid slow startup for --help
    from .ui.dashboard import run_ui

    print(f"Starting CryptoSage for {symbol}...")
    print(f"  Interval: {interval.value}")
    print(f"  Live window: {config.live_capacity} points")
    print()

    await run_ui(config, symbol, interval, top_count)


def _interval(label: str) -> ChartInterval:
    try:
        return ChartInterval.parse(label)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _holding(text: str) -> tuple[str, float]:
    symbol, sep, amount = text.partition("=")
    try:
        if not sep or not symbol.strip():
            raise ValueError(text)
        return symbol.strip().upper(), float(amount)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected SYMBOL=AMOUNT, got {text!r}") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CryptoSage - crypto price chart, heat map and sentiment",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    cryptosage BTC
    cryptosage ETH --interval LIVE
    cryptosage SOL --interval 4H --top 15
    cryptosage --watch cardano --unwatch solana --hold BTC=0.25
        """
    )

    parser.add_argument(
        "symbol",
        nargs="?",
        default="BTC",
        help="Base asset symbol (default: BTC)"
    )

    parser.add_argument(
        "--interval",
        type=_interval,
        default=ChartInterval.ONE_DAY,
        help="Chart interval: " + ", ".join(i.value for i in ChartInterval) + " (default: 1D)"
    )

    parser.add_argument(
        "--capacity",
        type=int,
        default=None,
        help="Live window capacity in points (default: 300)"
    )

    parser.add_argument(
        "--top",
        type=int,
        default=DEFAULT_HEATMAP_TOP,
        help="Coins shown individually on the heat map (default: 10)"
    )

    parser.add_argument(
        "--watch",
        action="append",
        default=[],
        metavar="COIN_ID",
        help="Add a CoinGecko coin id to the saved watch-list"
    )

    parser.add_argument(
        "--unwatch",
        action="append",
        default=[],
        metavar="COIN_ID",
        help="Remove a coin id from the saved watch-list"
    )

    parser.add_argument(
        "--hold",
        action="append",
        default=[],
        type=_holding,
        metavar="SYMBOL=AMOUNT",
        help="Set the amount held of a coin (0 removes it)"
    )

    return parser


def apply_store_edits(config: SageConfig, args: argparse.Namespace) -> None:
    """Persist watch-list and holding edits given on the command line."""
    if not (args.watch or args.unwatch or args.hold):
        return
    store = KeyValueStore(config.data_dir)
    watchlist = store.edit_watchlist(add=args.watch, remove=args.unwatch)
    for symbol, amount in args.hold:
        store.set_holding(symbol, amount)
    print(f"Watch-list: {', '.join(watchlist.ids) or '(empty)'}")


def cli(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    overrides = {}
    if args.capacity is not None:
        overrides['live_capacity'] = args.capacity
    try:
        config = SageConfig(overrides)
    except ConfigurationError as e:
        parser.error(str(e))

    config.setup_logging()

    try:
        apply_store_edits(config, args)
    except StorageError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if not is_supported_symbol(args.symbol):
        print(f"Warning: {args.symbol.upper()} may not be listed on Binance", file=sys.stderr)

    try:
        asyncio.run(main(config, args.symbol.upper(), args.interval, args.top))
    except KeyboardInterrupt:
        print("\nShutdown requested.")
        sys.exit(0)


if __name__ == "__main__":
    cli()
