"""
COGS History Report

Unit cost history grouped item -> vendor -> month.

Item codes are discovered first (a failed discovery aborts the report),
then history rows are paged sequentially until a short page. The store only
filters by year, so the exact month range is applied while merging.
"""

from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import Select, func, select

from report_engine.aggregation.merger import Level, MergeMode, MergePlan, by_total
from report_engine.aggregation.nodes import AggregateNode, format_year_month
from report_engine.database.models import CogsEntry
from report_engine.ingestion.collector import CollectedPages
from report_engine.ingestion.scheduler import DiscoveryError
from report_engine.ingestion.sources import PagedQuery, SessionFactory, SqlPagedQuery, group_key
from report_engine.reports.assembler import ReportAssembler, ReportResult
from report_engine.reports.customer_purchases import load_item_lookups
from report_engine.reports.engine import Pagination, ReportDefinition, ReportEngine

logger = structlog.get_logger(__name__)

REPORT_NAME = "cogs_history"
UNKNOWN_VENDOR = "UNKNOWN"

Discover = Callable[[Mapping[str, Any]], Awaitable[List[str]]]


class CogsRow(BaseModel):
    """Unit cost of one item from one vendor in one month"""
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)
    
    item_code: str = Field(min_length=1)
    vendor_code: str = UNKNOWN_VENDOR
    vendor_name: Optional[str] = None
    year: int = Field(ge=1900, le=9999)
    month: int = Field(ge=1, le=12)
    cogs_unit: Optional[float] = None
    
    @field_validator("vendor_code", mode="before")
    @classmethod
    def default_vendor(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return UNKNOWN_VENDOR
        return v
    
    @property
    def year_month(self) -> str:
        return format_year_month(self.year, self.month)
    
    @property
    def period(self) -> int:
        return self.year * 100 + self.month


def month_range_filter(from_date: Optional[date], to_date: Optional[date]) -> Optional[Callable[[CogsRow], bool]]:
    """Keep rows whose year*100+month lies within the date range"""
    if from_date is None or to_date is None:
        return None
    start = from_date.year * 100 + from_date.month
    end = to_date.year * 100 + to_date.month
    
    def within(row: CogsRow) -> bool:
        return start <= row.period <= end
    
    return within


def cogs_history_definition(
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    descriptions: Optional[Mapping[str, str]] = None,
) -> ReportDefinition:
    descriptions = dict(descriptions or {})
    
    def describe_items(root: AggregateNode) -> None:
        for item in root.children.values():
            item.attributes["description"] = descriptions.get(item.key)
    
    return ReportDefinition(
        name=REPORT_NAME,
        row_model=CogsRow,
        plan=MergePlan(
            levels=[
                Level.of("item_code", sort_key=lambda node: node.key, descending=False),
                Level.of("vendor_code", "vendor_name", default_key=UNKNOWN_VENDOR, sort_key=by_total),
            ],
            amount=lambda row: row.cogs_unit or 0.0,
            year_month=lambda row: row.year_month,
            mode=MergeMode.OVERWRITE,
        ),
        pagination=Pagination.SEQUENTIAL,
        row_filter=month_range_filter(from_date, to_date),
        post_process=describe_items,
    )


def cogs_history_filters(
    item_code: Optional[str] = None,
    vendor_code: Optional[str] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> Dict[str, Any]:
    if from_date and to_date and from_date > to_date:
        raise ValueError("from_date must not be after to_date")
    return {
        "item_code": item_code or None,
        "vendor_code": None if vendor_code in (None, "", "all") else vendor_code,
        "from_year": from_date.year if from_date else None,
        "to_year": to_date.year if to_date else None,
        "from_period": from_date.year * 100 + from_date.month if from_date else None,
        "to_period": to_date.year * 100 + to_date.month if to_date else None,
    }


def _conditions(filters: Mapping[str, Any]) -> list:
    conditions = []
    if filters.get("item_code"):
        conditions.append(CogsEntry.item_code == filters["item_code"])
    if filters.get("item_codes") is not None:
        conditions.append(CogsEntry.item_code.in_(filters["item_codes"]))
    if filters.get("vendor_code"):
        conditions.append(CogsEntry.vendor_code == filters["vendor_code"])
    if filters.get("from_year") is not None:
        conditions.append(CogsEntry.year >= filters["from_year"])
    if filters.get("to_year") is not None:
        conditions.append(CogsEntry.year <= filters["to_year"])
    return conditions


def cogs_history_statement(filters: Mapping[str, Any]) -> Select:
    """
    One row per item, vendor and month, ordered for stable paging.
    
    Blank vendors are grouped under UNKNOWN and several entries for the same
    month are averaged, so each month bucket receives exactly one row.
    """
    vendor_code = group_key(CogsEntry.vendor_code, UNKNOWN_VENDOR)
    return (
        select(
            CogsEntry.item_code,
            vendor_code.label("vendor_code"),
            func.max(CogsEntry.vendor_name).label("vendor_name"),
            CogsEntry.year,
            CogsEntry.month,
            func.avg(CogsEntry.cogs_unit).label("cogs_unit"),
        )
        .where(*_conditions(filters))
        .group_by(CogsEntry.item_code, vendor_code, CogsEntry.year, CogsEntry.month)
        .order_by(CogsEntry.item_code, CogsEntry.year, CogsEntry.month, vendor_code)
    )


def sql_item_discovery(session_factory: Optional[SessionFactory] = None) -> Discover:
    """Discovery of distinct item codes matching the filters"""
    
    async def discover(filters: Mapping[str, Any]) -> List[str]:
        factory = session_factory
        if factory is None:
            from report_engine.database.connection import get_db
            factory = get_db
        stmt = select(CogsEntry.item_code).where(*_conditions(filters)).distinct().order_by(CogsEntry.item_code)
        async with factory() as session:
            result = await session.execute(stmt)
            return [item_code for item_code in result.scalars().all()]
    
    return discover


async def build_cogs_history_report(
    item_code: Optional[str] = None,
    vendor_code: Optional[str] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    source: Optional[PagedQuery] = None,
    discover: Optional[Discover] = None,
    descriptions: Optional[Mapping[str, str]] = None,
    session_factory: Optional[SessionFactory] = None,
    **engine_kwargs: Any,
) -> ReportResult:
    """
    COGS history for an item and/or vendor over a date range.
    
    Raises:
        DiscoveryError: If item codes cannot be discovered
    """
    filters = cogs_history_filters(item_code, vendor_code, from_date, to_date)
    discover = discover or sql_item_discovery(session_factory)
    
    try:
        item_codes = await discover(filters)
    except Exception as e:
        logger.error("Error discovering item codes", error=str(e))
        raise DiscoveryError(REPORT_NAME, f"{type(e).__name__}: {e}") from e
    
    logger.info("Discovered item codes", items=len(item_codes), vendor=filters["vendor_code"])
    if not item_codes:
        return ReportAssembler().assemble(REPORT_NAME, AggregateNode(key="__all__"), CollectedPages())
    
    if descriptions is None:
        _, descriptions = await load_item_lookups(item_codes, session_factory)
    
    filters = {**filters, "item_codes": item_codes}
    source = source or SqlPagedQuery(cogs_history_statement, session_factory)
    engine = ReportEngine(source, cogs_history_definition(from_date, to_date, descriptions), **engine_kwargs)
    return await engine.run_cached(filters)
