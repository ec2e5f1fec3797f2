#!/usr/bin/env python3
"""
Run the Copy-Trading Bot

Command-line interface for the copy-trading core: manage subscriptions and
paper portfolios, replay recorded source trades through the replication
pipeline, and run the background reconciler.

Usage:
    # Follow a wallet in paper mode and open a $1000 paper portfolio
    python scripts/run_copy_bot.py --subscribe alice 0xabc... --mode paper
    python scripts/run_copy_bot.py --open-portfolio alice --balance 1000

    # Replay source trades (one JSON trade per line) and keep running
    python scripts/run_copy_bot.py --replay trades.jsonl --duration 60

    # Run one reconciliation pass (redeem resolved markets) and exit
    python scripts/run_copy_bot.py --reconcile

    # Show a subscriber's portfolio and recent replicas
    python scripts/run_copy_bot.py --portfolio alice

    # Check status
    python scripts/run_copy_bot.py --status

    # Auto mode for the configured wallet (CAUTION - real money)
    python scripts/run_copy_bot.py --live alice --replay trades.jsonl

Safety Notes:
    - Paper mode is the default. Real orders are only placed for subscribers in
      auto mode, with copy trading enabled, when --live registers a wallet.
    - Live mode requires POLYMARKET_PRIVATE_KEY and POLYMARKET_FUNDER in .env

Environment Variables:
    POLYMARKET_PRIVATE_KEY - Private key for signing transactions
    POLYMARKET_FUNDER - Funder (proxy wallet) address
    DB_PATH - sqlite database path (default: data/copytrade.db)
    TEST_MODE - Tighter default limits for new subscribers
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.config import (
    DB_FULL_PATH,
    LOGS_DIR,
    PAPER_STARTING_BALANCE,
    POLYMARKET_FUNDER,
    POLYMARKET_PRIVATE_KEY,
    TEST_MODE,
)
from src.copytrade import CopyTradeService, SubscriptionMode
from src.exchanges import PolymarketAdapter, create_clob_client


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the bot."""
    level = logging.DEBUG if verbose else logging.INFO

    # Create formatters
    console_format = "%(asctime)s [%(levelname)s] %(message)s"
    file_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(console_format, datefmt="%H:%M:%S"))

    # File handler
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOGS_DIR / f"copy_bot_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(file_format))

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Reduce noise from external libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)

    print(f"Logs will be written to: {log_file}")


def build_service(live_owner: str = None) -> CopyTradeService:
    """Create the service, registering the configured wallet for `live_owner`."""
    adapter = None
    if live_owner:
        client = create_clob_client()
        if client is None:
            raise RuntimeError("POLYMARKET_PRIVATE_KEY and POLYMARKET_FUNDER must be set for --live")
        adapter = PolymarketAdapter()
        adapter.register_client(live_owner, client)
    return CopyTradeService.create(adapter=adapter)


def load_trades(path: Path) -> list[dict]:
    """Read one raw trade per line, skipping blank and malformed lines."""
    trades = []
    with open(path) as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                trades.append(json.loads(line))
            except json.JSONDecodeError as e:
                print(f"  Skipping line {line_no}: {e}")
    return trades


def show_status(service: CopyTradeService) -> None:
    """Show configuration and service state."""
    print("\n" + "=" * 70)
    print("Copy-Trading Bot Status")
    print("=" * 70)

    print("\nConfiguration:")
    print(f"  Database: {DB_FULL_PATH}")
    print(f"  Test Mode: {TEST_MODE}")

    print("\nCredentials:")
    has_key = bool(POLYMARKET_PRIVATE_KEY)
    has_funder = bool(POLYMARKET_FUNDER)
    print(f"  Private Key: {'Configured' if has_key else 'NOT CONFIGURED'}")
    print(f"  Funder Address: {'Configured' if has_funder else 'NOT CONFIGURED'}")
    print(f"  Auto Mode: {'Ready' if (has_key and has_funder) else 'NOT AVAILABLE'}")

    followed = service.registry.followed_accounts()
    print(f"\nFollowed Accounts: {len(followed)}")
    for account in followed:
        subs = service.registry.subscribers_of(account)
        print(f"  {account}: {', '.join(f'{s.subscriber_id} ({s.mode})' for s in subs)}")

    accounts = service.ledger.list_accounts()
    print(f"\nActive Portfolios: {len(accounts)}")
    for account in accounts:
        print(f"  {account.owner_id} [{account.kind}]: cash ${account.cash:.2f}")

    print("\n" + "=" * 70)


def show_portfolio(service: CopyTradeService, subscriber_id: str) -> None:
    """Print a subscriber's paper portfolio, settings and recent replicas."""
    print("\n" + "=" * 70)
    print(f"Portfolio: {subscriber_id}")
    print("=" * 70)

    summary = service.ledger.get_pnl_summary(subscriber_id)
    if not summary:
        print("\nNo paper portfolio. Open one with --open-portfolio")
    else:
        print(f"\n  Cash: ${summary['cash']}")
        print(f"  Positions Value: ${summary['positions_value']}")
        print(f"  Total Value: ${summary['total_value']}")
        print(f"  P&L: ${summary['total_pnl']} ({summary['return_pct']}%)")
        print(f"  24h P&L: ${summary['pnl_24h']}")

        positions = service.ledger.get_positions_valued(subscriber_id)
        if positions:
            print("\nPositions:")
            for p in positions:
                flag = "" if p["has_price_data"] else " (no live price)"
                print(f"  {p['title']} [{p['outcome']}]: {p['shares']} @ {p['avg_price']} -> ${p['current_value']:.2f}{flag}")

    config = service.registry.get_risk_config(subscriber_id)
    print("\nRisk Settings:")
    for key, value in config.to_dict().items():
        if key != "subscriber_id":
            print(f"  {key}: {value}")

    history = service.replicator.history(subscriber_id, limit=10)
    if history:
        print("\nRecent Replicas:")
        for r in history:
            reason = f" - {r['error_reason']}" if r["error_reason"] else ""
            print(f"  [{r['status']}] {r['side']} {r['title']} ({r['mode']}){reason}")

    print("\n" + "=" * 70)


async def run_bot(
    service: CopyTradeService,
    replay_path: Path = None,
    duration_minutes: int = 0,
) -> None:
    """
    Start background tasks, replay recorded trades, and keep running.

    Args:
        service: Wired copy-trade service
        replay_path: Optional JSONL file of raw source trades
        duration_minutes: How long to keep running after replay (0 = exit after replay)
    """
    await service.start()
    try:
        if replay_path:
            trades = load_trades(replay_path)
            print(f"\nReplaying {len(trades)} trades from {replay_path}")
            for raw in trades:
                results = await service.handle_trade(raw)
                for subscriber_id, result in results.items():
                    status = "OK" if result.success else f"{result.error}: {result.message}"
                    print(f"  {subscriber_id}: {status}")

        if duration_minutes > 0:
            print(f"\nRunning background tasks for {duration_minutes} minutes (Ctrl+C to stop)")
            await asyncio.sleep(duration_minutes * 60)
    except KeyboardInterrupt:
        print("\nShutdown requested by user...")
    finally:
        await service.stop()

        status = service.get_status()
        print("\n" + "=" * 70)
        print("Session Summary")
        print("=" * 70)
        print(f"  Events seen: {status['events_seen']}")
        print(f"  Events replicated: {status['events_replicated']}")
        print(f"  Positions redeemed: {status['reconciler']['total_redeemed']}")
        print("\n" + "=" * 70)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run the Copy-Trading Bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_copy_bot.py --subscribe alice 0xabc --mode paper
  python scripts/run_copy_bot.py --open-portfolio alice --balance 1000
  python scripts/run_copy_bot.py --replay trades.jsonl   # Replicate recorded trades
  python scripts/run_copy_bot.py --reconcile             # Redeem resolved markets
  python scripts/run_copy_bot.py --portfolio alice       # Show portfolio
  python scripts/run_copy_bot.py --status                # Check status
        """,
    )

    # Command arguments
    command_group = parser.add_mutually_exclusive_group()
    command_group.add_argument(
        "--status",
        action="store_true",
        help="Show current status and exit",
    )
    command_group.add_argument(
        "--subscribe",
        nargs=2,
        metavar=("SUBSCRIBER", "SOURCE"),
        help="Follow a source wallet",
    )
    command_group.add_argument(
        "--unsubscribe",
        nargs=2,
        metavar=("SUBSCRIBER", "SOURCE"),
        help="Stop following a source wallet",
    )
    command_group.add_argument(
        "--open-portfolio",
        metavar="SUBSCRIBER",
        help="Open (or reactivate) a paper portfolio",
    )
    command_group.add_argument(
        "--portfolio",
        metavar="SUBSCRIBER",
        help="Show a subscriber's paper portfolio",
    )
    command_group.add_argument(
        "--reconcile",
        action="store_true",
        help="Run one reconciliation pass and exit",
    )
    command_group.add_argument(
        "--replay",
        type=Path,
        metavar="FILE",
        help="Replicate raw trades from a JSONL file",
    )

    # Configuration arguments
    parser.add_argument(
        "--mode",
        choices=[m.value for m in SubscriptionMode],
        default=SubscriptionMode.PAPER.value,
        help="Subscription mode for --subscribe (default: paper)",
    )
    parser.add_argument(
        "--balance",
        type=float,
        default=PAPER_STARTING_BALANCE,
        metavar="USD",
        help=f"Starting balance for --open-portfolio (default: {PAPER_STARTING_BALANCE})",
    )
    parser.add_argument(
        "--live",
        metavar="SUBSCRIBER",
        help="Register the configured wallet for SUBSCRIBER (CAUTION: real money at risk)",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        metavar="MINUTES",
        help="Keep background tasks running after replay (default: 0)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    # Setup logging
    setup_logging(verbose=args.verbose)

    try:
        service = build_service(live_owner=args.live)

        if args.status:
            show_status(service)
        elif args.subscribe:
            subscriber_id, source = args.subscribe
            sub = service.registry.subscribe(subscriber_id, source, SubscriptionMode(args.mode))
            print(f"{sub.subscriber_id} now follows {sub.source_account} in {sub.mode} mode")
        elif args.unsubscribe:
            removed = service.registry.unsubscribe(*args.unsubscribe)
            print("Unsubscribed" if removed else "Subscription not found")
        elif args.open_portfolio:
            result = service.ledger.open_account(args.open_portfolio, args.balance)
            print(result.message)
        elif args.portfolio:
            show_portfolio(service, args.portfolio)
        elif args.reconcile:
            summary = asyncio.run(service.reconciler.run_once())
            print(f"Reconciliation: {summary}")
        else:
            asyncio.run(run_bot(service, replay_path=args.replay, duration_minutes=args.duration))
    except Exception as e:
        print(f"\nFatal error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
