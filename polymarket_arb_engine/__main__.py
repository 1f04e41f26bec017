"""
Entry point for the arbitrage engine.

Usage:
    python -m polymarket_arb_engine scan [--limit N] [--all]
    python -m polymarket_arb_engine run
    python -m polymarket_arb_engine clear [--dry-run] [--resolved]
"""

import argparse
import asyncio
import json
import sys
from typing import Optional

from .bot import build_orchestrator, close_orchestrator, run_bot
from .config import Config, load_config_from_env
from .errors import ArbitrageError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="polymarket_arb_engine",
        description="YES/NO complement arbitrage on Polymarket",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="rank markets by current arbitrage margin")
    scan.add_argument("--limit", type=int, default=None, help="markets to pull (default: SCAN_LIMIT)")
    scan.add_argument("--all", action="store_true", help="also print markets with no opportunity")

    sub.add_parser("run", help="start on the best market and monitor until interrupted")

    clear = sub.add_parser("clear", help="turn inventory in POLYMARKET_MARKETS back into USDC")
    clear.add_argument("--dry-run", action="store_true", help="plan actions without sending anything")
    clear.add_argument("--resolved", action="store_true", help="treat the markets as resolved (redeem)")

    return parser


async def _scan(config: Config, show_all: bool) -> int:
    orchestrator = build_orchestrator(config)
    try:
        results = await orchestrator.scan_markets()
    finally:
        await close_orchestrator(orchestrator)

    for result in results:
        if show_all or result.is_actionable:
            print(json.dumps(result.to_dict(), default=str))
    return 0


async def _clear(config: Config, dry_run: bool, resolved: bool) -> int:
    orchestrator = build_orchestrator(config)
    try:
        await orchestrator.orders.ensure_api_credentials()
        markets = [await orchestrator.resolve_market(m) for m in config.markets]
        if resolved:
            for market in markets:
                market.resolved = True
        results = await orchestrator.clear_positions(markets, execute=not dry_run)
    finally:
        await close_orchestrator(orchestrator)

    for result in results:
        print(json.dumps(result.to_dict(), default=str))
    return 0 if all(r.success for r in results) else 1


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config_from_env()

        errors = config.validate()
        if errors:
            print("Configuration errors:", file=sys.stderr)
            for error in errors:
                print(f"  - {error}", file=sys.stderr)
            return 1

        if args.command == "scan":
            if args.limit is not None:
                config.scanner.limit = args.limit
            return asyncio.run(_scan(config, args.all))

        if args.command == "clear":
            if not config.markets:
                print("POLYMARKET_MARKETS is empty; nothing to clear", file=sys.stderr)
                return 1
            return asyncio.run(_clear(config, args.dry_run, args.resolved))

        selected = asyncio.run(run_bot(config))
        if selected is None:
            print("No market currently above the profit threshold", file=sys.stderr)
        return 0

    except KeyboardInterrupt:
        print("\nShutdown requested")
        return 0
    except ArbitrageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
