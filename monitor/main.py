#!/usr/bin/env python3
"""Oracle Status Monitor.

Periodically reads reference prices from the on-chain reference contract,
compares them with real-world prices and expected update intervals, and
alerts when a value is stale or deviates too much. Also checks that the
relayer account keeps enough balance to submit transactions.

Configure with CLI args or env vars. CLI args take precedence.
"""

import argparse
import asyncio
import logging
import os
import sys

from .src.AlertSink import AlertSink, LogAlertSink, WebhookAlertSink
from .src.BatchQueryEngine import BatchQueryEngine, Pacing
from .src.ContractUtility import ContractUtility
from .src.MonitorStore import MonitorStore
from .src.PriceClassifier import PriceClassifier
from .src.RelayerBalanceChecker import RelayerBalanceChecker
from .src.StatusMonitor import StatusMonitor

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser with environment defaults."""
    parser = argparse.ArgumentParser(
        description="Oracle Status Monitor: staleness and deviation alerts for on-chain prices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Monitor a reference contract on testnet every 10 minutes
  python -m monitor.main --network sapphire-testnet \\
      --contract-address 0x... --relayer 0x...

  # Single run against a custom RPC with webhook alerts
  python -m monitor.main --network https://rpc.example.org \\
      --contract-address 0x... --alert-webhook-url https://hooks... --once

Environment variables (CLI args take precedence):
  NETWORK, RPC_URL, CONTRACT_ADDRESS, RELAYER, BALANCE_THRESHOLD,
  DATABASE_PATH, MAX_RETRY, PAGE_SIZE, QUERY_DELAY, CHECK_PERIOD,
  ALERT_WEBHOOK_URL
""",
    )

    parser.add_argument(
        "--network",
        type=str,
        help="Network name (sapphire, sapphire-testnet, sapphire-localnet) or RPC URL",
        default=os.environ.get("NETWORK") or "sapphire-localnet",
    )

    parser.add_argument(
        "--contract-address",
        dest="contract_address",
        type=str,
        help="Address of the reference contract to monitor",
        default=os.environ.get("CONTRACT_ADDRESS"),
    )

    parser.add_argument(
        "--relayer",
        type=str,
        help="Relayer account address whose balance is checked (optional)",
        default=os.environ.get("RELAYER"),
    )

    parser.add_argument(
        "--balance-threshold",
        dest="balance_threshold",
        type=int,
        help="Minimum relayer balance in wei before alerting (default: 10**18)",
        default=int(os.environ.get("BALANCE_THRESHOLD") or str(10**18)),
    )

    parser.add_argument(
        "--database-path",
        dest="database_path",
        type=str,
        help="SQLite database path (default: monitor.db)",
        default=os.environ.get("DATABASE_PATH") or "monitor.db",
    )

    parser.add_argument(
        "--max-retry",
        dest="max_retry",
        type=int,
        help="Failed attempts per page before it is skipped (default: 3)",
        default=int(os.environ.get("MAX_RETRY") or "3"),
    )

    parser.add_argument(
        "--page-size",
        dest="page_size",
        type=int,
        help="Symbols per getReferenceDataBulk query (default: 25)",
        default=int(os.environ.get("PAGE_SIZE") or "25"),
    )

    parser.add_argument(
        "--query-delay",
        dest="query_delay",
        type=float,
        help="Seconds to wait after every page query (default: 3.0, 0 to disable)",
        default=float(os.environ.get("QUERY_DELAY") or "3.0"),
    )

    parser.add_argument(
        "--check-period",
        dest="check_period",
        type=int,
        help="Seconds between checks (minimum: 10, default: 600)",
        default=int(os.environ.get("CHECK_PERIOD") or "600"),
    )

    parser.add_argument(
        "--alert-webhook-url",
        dest="alert_webhook_url",
        type=str,
        help="Webhook URL receiving alerts (default: log only)",
        default=os.environ.get("ALERT_WEBHOOK_URL"),
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run every check once and exit",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    return parser


def main() -> None:
    """Main entry point for the Oracle Status Monitor CLI."""
    parser = build_parser()
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Validate arguments
    if not args.contract_address:
        parser.error("--contract-address (or CONTRACT_ADDRESS) is required")

    if args.check_period < 10:
        parser.error("--check-period must be at least 10 seconds")

    if args.page_size < 1:
        parser.error("--page-size must be at least 1")

    if args.max_retry < 1:
        parser.error("--max-retry must be at least 1")

    if args.query_delay < 0:
        parser.error("--query-delay must not be negative")

    # Log configuration
    logger.info("=" * 60)
    logger.info("Oracle Status Monitor")
    logger.info("=" * 60)
    logger.info(f"Network:           {args.network}")
    logger.info(f"Contract:          {args.contract_address}")
    logger.info(f"Relayer:           {args.relayer or 'not monitored'}")
    if args.relayer:
        logger.info(f"Balance Threshold: {args.balance_threshold}")
    logger.info(f"Database:          {args.database_path}")
    logger.info(f"Page Size:         {args.page_size}")
    logger.info(f"Max Retry:         {args.max_retry}")
    logger.info(f"Query Delay:       {args.query_delay}s")
    logger.info(f"Check Period:      {args.check_period}s")
    logger.info(f"Alerts:            {'webhook' if args.alert_webhook_url else 'log only'}")
    logger.info("=" * 60)

    try:
        alert_sink: AlertSink
        if args.alert_webhook_url:
            alert_sink = WebhookAlertSink(args.alert_webhook_url)
        else:
            alert_sink = LogAlertSink()

        contract_utility = ContractUtility(args.network)
        store = MonitorStore(args.database_path)

        engine = BatchQueryEngine(
            query_page=contract_utility.reference_query(args.contract_address),
            alert_sink=alert_sink,
            page_size=args.page_size,
            max_retries=args.max_retry,
            pacing=Pacing(args.query_delay),
        )
        classifier = PriceClassifier(store, alert_sink)

        balance_checker = None
        if args.relayer:
            balance_checker = RelayerBalanceChecker(
                address=args.relayer,
                threshold=args.balance_threshold,
                get_balance=contract_utility.get_balance,
                store=store,
                alert_sink=alert_sink,
                network_name=args.network,
            )

        status_monitor = StatusMonitor(
            store=store,
            engine=engine,
            classifier=classifier,
            alert_sink=alert_sink,
            balance_checker=balance_checker,
            check_period=args.check_period,
        )

        if args.once:
            async def run_once() -> None:
                try:
                    await status_monitor.run_once()
                finally:
                    await alert_sink.aclose()

            asyncio.run(run_once())
        else:
            asyncio.run(status_monitor.run())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
