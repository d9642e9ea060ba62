"""
Command-line access to the portfolio engine.

Examples:
    portfolio create-account "Brokerage"
    portfolio add-security BHP.AX "BHP GROUP" --exchange ASX --type EQUITY
    portfolio buy BHP.AX 1234567 2025-01-10 100 42.50 --brokerage 9.95
    portfolio sell BHP.AX 1234567 2026-03-02 40 47.10
    portfolio accounts
    portfolio report --account 1234567 --country Australia

All output is JSON.
"""
import argparse
import json
import sys
from pathlib import Path
from typing import Any, List, Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from calculators.lot_ledger import LedgerError
from lib.market_data import MarketDataError
from services.portfolio_service import PortfolioService
from utils.config import AppConfig
from utils.logging_config import setup_logger

logger = setup_logger(__name__)


def _print(data: Any):
    print(json.dumps(data, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Trade-lot accounting and portfolio valuation")
    sub = parser.add_subparsers(dest="command", required=True)

    for name in ("buy", "sell"):
        trade = sub.add_parser(name, help=f"Record a {name} trade")
        trade.add_argument("symbol")
        trade.add_argument("account_id")
        trade.add_argument("date", help="Trade date (YYYY-MM-DD)")
        trade.add_argument("quantity")
        trade.add_argument("price")
        trade.add_argument("--brokerage", default=None, help="Defaults to the brokerage auto-fill setting")

    sub.add_parser("accounts", help="Account summary with portfolio totals")

    create = sub.add_parser("create-account", help="Create an account")
    create.add_argument("name")

    add = sub.add_parser("add-security", help="Add a security")
    add.add_argument("symbol")
    add.add_argument("name")
    add.add_argument("--exchange", required=True)
    add.add_argument("--type", default="")

    report = sub.add_parser("report", help="Portfolio report")
    report.add_argument("--account", default="", help="Account id (default: all accounts)")
    report.add_argument("--country", action="append", default=[], dest="countries")
    report.add_argument("--financial-status", action="append", default=[])
    report.add_argument("--mining-status", action="append", default=[])
    report.add_argument("--resource", action="append", default=[], dest="resources")
    report.add_argument("--product", action="append", default=[], dest="products")
    report.add_argument("--recommendation", action="append", default=[], dest="recommendations")
    report.add_argument("--no-chart", action="store_true", help="Omit chart data points")

    settings = sub.add_parser("settings", help="Update settings")
    settings.add_argument("--currency")
    settings.add_argument("--gst-percent")
    settings.add_argument("--brokerage-auto-fill")

    return parser


def run(args: argparse.Namespace, service: PortfolioService):
    if args.command == "buy":
        entry = service.record_buy(
            args.symbol, args.account_id, args.date, args.quantity, args.price, args.brokerage
        )
        _print(entry.to_dict())

    elif args.command == "sell":
        entries = service.record_sell(
            args.symbol, args.account_id, args.date, args.quantity, args.price, args.brokerage
        )
        _print([e.to_dict() for e in entries])

    elif args.command == "accounts":
        _print(service.get_account_summary().to_dict())

    elif args.command == "create-account":
        _print(service.create_account(args.name).to_dict())

    elif args.command == "add-security":
        security = service.add_security(args.symbol, args.name, args.exchange, args.type)
        _print({'symbol': security.symbol, 'currency': security.currency, 'exchange': security.exchange})

    elif args.command == "report":
        report = service.get_portfolio_report({
            'account_id': args.account,
            'countries': args.countries,
            'financial_status': args.financial_status,
            'mining_status': args.mining_status,
            'resources': args.resources,
            'products': args.products,
            'recommendations': args.recommendations,
        })
        data = report.to_dict()
        if args.no_chart:
            data.pop('chart')
        _print(data)

    elif args.command == "settings":
        settings = service.update_settings(
            currency=args.currency,
            gst_percent=args.gst_percent,
            brokerage_auto_fill=args.brokerage_auto_fill,
        )
        _print(settings.to_dict())


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    service = PortfolioService.from_config(AppConfig.from_env())

    try:
        run(args, service)
    except (LedgerError, MarketDataError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    finally:
        service.store.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
