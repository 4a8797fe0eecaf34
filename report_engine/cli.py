"""
Report Engine CLI

Build a report against the configured database and print it as JSON.

Example:
    report-engine region-turnover --from 2024-01-01 --to 2024-12-31
    report-engine stock-status --critical-only
"""

import argparse
import asyncio
import sys
from datetime import date
from typing import List, Optional

import structlog
from redis.exceptions import RedisError

from report_engine.config import get_settings
from report_engine.config.logging import configure_logging
from report_engine.database.connection import close_database, init_database
from report_engine.ingestion.scheduler import ReportEngineError
from report_engine.reports import (
    build_cogs_history_report,
    build_customer_purchases_report,
    build_region_turnover_report,
    build_stock_status_report,
)
from report_engine.reports.assembler import ReportResult
from report_engine.reports.cache import close_redis, create_report_cache, init_redis

logger = structlog.get_logger(__name__)


def _date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date (expected YYYY-MM-DD): {value}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="report-engine", description=__doc__.strip().splitlines()[0])
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument("--database-url", default=None, help="Override the configured database URL")
    parser.add_argument("--indent", type=int, default=2, help="JSON indentation")
    subparsers = parser.add_subparsers(dest="report", required=True)
    
    region = subparsers.add_parser("region-turnover", help="Turnover by region, customer and month")
    region.add_argument("--from", dest="from_date", type=_date, required=True)
    region.add_argument("--to", dest="to_date", type=_date, required=True)
    region.add_argument("--salesperson", default=None)
    
    purchases = subparsers.add_parser("customer-purchases", help="Purchases of items by customer and month")
    purchases.add_argument("--items", required=True, help="Comma-separated item codes")
    purchases.add_argument("--from", dest="from_date", type=_date, required=True)
    purchases.add_argument("--to", dest="to_date", type=_date, required=True)
    purchases.add_argument("--salesperson", default=None)
    
    cogs = subparsers.add_parser("cogs-history", help="Unit cost history by item, vendor and month")
    cogs.add_argument("--item", default=None)
    cogs.add_argument("--vendor", default=None)
    cogs.add_argument("--from", dest="from_date", type=_date, default=None)
    cogs.add_argument("--to", dest="to_date", type=_date, default=None)
    
    stock = subparsers.add_parser("stock-status", help="Stock coverage by posting group, vendor and item")
    stock.add_argument("--as-of", dest="as_of", type=_date, default=None)
    stock.add_argument("--vendor", default=None)
    stock.add_argument("--posting-group", default=None)
    stock.add_argument("--hide-zero", action="store_true")
    stock.add_argument("--critical-only", action="store_true")
    
    return parser


async def run_report(args: argparse.Namespace) -> ReportResult:
    """Dispatch parsed arguments to the matching report builder"""
    settings = get_settings()
    engine_kwargs = {}
    
    if settings.engine.cache_enabled:
        try:
            await init_redis()
            engine_kwargs["cache"] = create_report_cache()
        except RedisError as e:
            logger.warning("Report cache unavailable, continuing without it", error=str(e))
    
    if args.report == "region-turnover":
        return await build_region_turnover_report(
            args.from_date, args.to_date, args.salesperson, **engine_kwargs
        )
    if args.report == "customer-purchases":
        item_codes = [code.strip() for code in args.items.split(",") if code.strip()]
        return await build_customer_purchases_report(
            item_codes, args.from_date, args.to_date, args.salesperson, **engine_kwargs
        )
    if args.report == "cogs-history":
        return await build_cogs_history_report(
            item_code=args.item,
            vendor_code=args.vendor,
            from_date=args.from_date,
            to_date=args.to_date,
            **engine_kwargs,
        )
    return await build_stock_status_report(
        as_of=args.as_of,
        vendor_code=args.vendor,
        posting_group=args.posting_group,
        hide_zero_stock=args.hide_zero,
        only_critical_and_low=args.critical_only,
        **engine_kwargs,
    )


async def _main(args: argparse.Namespace) -> int:
    await init_database(args.database_url)
    try:
        result = await run_report(args)
    except ReportEngineError as e:
        logger.error("Report failed", error=str(e))
        return 1
    finally:
        await close_database()
        if get_settings().engine.cache_enabled:
            await close_redis()
    
    print(result.model_dump_json(by_alias=True, indent=args.indent))
    if result.is_partial:
        logger.warning("Partial report", warning=result.warning())
        return 2
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    return asyncio.run(_main(args))


if __name__ == "__main__":
    sys.exit(main())
