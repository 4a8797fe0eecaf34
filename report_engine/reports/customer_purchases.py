"""
Customer Purchases Report

Purchases of selected items grouped item -> customer -> month. Rows are
individual sales lines, so several rows legitimately land in the same month
bucket and are merged in ACCUMULATE mode.

Margins are computed from summed sales and summed cost (quantity x latest
COGS unit) at every level, never by averaging per-line percentages.
"""

from datetime import date
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import Select, and_, select

from report_engine.aggregation.merger import Level, MergeMode, MergePlan
from report_engine.aggregation.nodes import AggregateNode, format_year_month
from report_engine.database.models import CogsEntry, SalesLine, StockItem
from report_engine.ingestion.sources import PagedQuery, SessionFactory, SqlPagedQuery
from report_engine.ingestion.collector import CollectedPages
from report_engine.reports.assembler import ReportAssembler, ReportResult
from report_engine.reports.engine import ReportDefinition, ReportEngine

logger = structlog.get_logger(__name__)

REPORT_NAME = "customer_purchases"
UNKNOWN_CUSTOMER = "unknown"


class PurchaseRow(BaseModel):
    """One sales line of a selected item"""
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)
    
    item_code: str
    customer_code: str = UNKNOWN_CUSTOMER
    customer_name: Optional[str] = None
    search_name: Optional[str] = None
    quantity: float = 0.0
    amount: float = 0.0
    unit_price: Optional[float] = None
    posting_date: date
    
    @field_validator("customer_code", mode="before")
    @classmethod
    def default_customer(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return UNKNOWN_CUSTOMER
        return v
    
    @field_validator("quantity", "amount", mode="before")
    @classmethod
    def null_to_zero(cls, v: Any) -> Any:
        return 0.0 if v is None else v
    
    @field_validator("unit_price", mode="before")
    @classmethod
    def zero_price_is_unknown(cls, v: Any) -> Any:
        if v is None or v == 0:
            return None
        return v
    
    @property
    def year_month(self) -> str:
        return format_year_month(self.posting_date.year, self.posting_date.month)
    
    @property
    def last_unit_price(self) -> Optional[float]:
        return self.unit_price


def customer_purchases_definition(
    cogs_units: Optional[Mapping[str, float]] = None,
    descriptions: Optional[Mapping[str, str]] = None,
) -> ReportDefinition:
    """
    Build the report definition for a set of item lookups.
    
    Args:
        cogs_units: Latest unit cost per item code; items without one get no margin
        descriptions: Item descriptions, the item code is used when missing
    """
    cogs_units = dict(cogs_units or {})
    descriptions = dict(descriptions or {})
    
    def line_cost(row: PurchaseRow) -> Optional[float]:
        cogs_unit = cogs_units.get(row.item_code)
        if not cogs_unit:
            return None
        return row.quantity * cogs_unit
    
    def describe_items(root: AggregateNode) -> None:
        for item in root.children.values():
            item.attributes["item_description"] = descriptions.get(item.key) or item.key
            item.attributes["cogs_unit"] = cogs_units.get(item.key)
    
    return ReportDefinition(
        name=REPORT_NAME,
        row_model=PurchaseRow,
        plan=MergePlan(
            levels=[
                Level.of("item_code"),
                Level.of("customer_code", "customer_name", "search_name", latest=("last_unit_price",)),
            ],
            amount=lambda row: row.amount,
            quantity=lambda row: row.quantity,
            cost=line_cost,
            year_month=lambda row: row.year_month,
            mode=MergeMode.ACCUMULATE,
        ),
        post_process=describe_items,
    )


def customer_purchases_filters(
    item_codes: Sequence[str],
    from_date: date,
    to_date: date,
    salesperson_code: Optional[str] = None,
) -> Dict[str, Any]:
    if from_date > to_date:
        raise ValueError("from_date must not be after to_date")
    return {
        "item_codes": sorted(set(item_codes)),
        "from_date": from_date,
        "to_date": to_date,
        "salesperson_code": None if salesperson_code in (None, "", "all") else salesperson_code,
    }


def customer_purchases_statement(filters: Mapping[str, Any]) -> Select:
    """Sales lines of the selected items, ordered for stable paging"""
    conditions = [
        SalesLine.item_code.in_(filters["item_codes"]),
        SalesLine.posting_date >= filters["from_date"],
        SalesLine.posting_date <= filters["to_date"],
    ]
    if filters.get("salesperson_code"):
        conditions.append(SalesLine.salesperson_code == filters["salesperson_code"])
    
    return (
        select(
            SalesLine.item_code,
            SalesLine.customer_code,
            SalesLine.customer_name,
            SalesLine.search_name,
            SalesLine.quantity,
            SalesLine.amount,
            SalesLine.unit_price,
            SalesLine.posting_date,
        )
        .where(and_(*conditions))
        .order_by(SalesLine.posting_date, SalesLine.line_id)
    )


async def load_item_lookups(
    item_codes: Sequence[str],
    session_factory: Optional[SessionFactory] = None,
) -> Tuple[Dict[str, float], Dict[str, str]]:
    """
    Latest COGS unit and description per item.
    
    Lookup failures are logged and yield empty maps: the report is still
    built, without margins or descriptions.
    """
    if session_factory is None:
        from report_engine.database.connection import get_db
        session_factory = get_db
    
    cogs_units: Dict[str, float] = {}
    descriptions: Dict[str, str] = {}
    
    try:
        async with session_factory() as session:
            result = await session.execute(
                select(CogsEntry.item_code, CogsEntry.cogs_unit)
                .where(CogsEntry.item_code.in_(item_codes), CogsEntry.cogs_unit.is_not(None))
                .order_by(CogsEntry.item_code, CogsEntry.year.desc(), CogsEntry.month.desc())
            )
            for item_code, cogs_unit in result.all():
                cogs_units.setdefault(item_code, float(cogs_unit))
    except Exception as e:
        logger.error("Error fetching COGS data", error=str(e), items=len(item_codes))
    
    try:
        async with session_factory() as session:
            result = await session.execute(
                select(StockItem.item_code, StockItem.description).where(StockItem.item_code.in_(item_codes))
            )
            descriptions = {item_code: description for item_code, description in result.all() if description}
    except Exception as e:
        logger.error("Error fetching item descriptions", error=str(e), items=len(item_codes))
    
    return cogs_units, descriptions


async def build_customer_purchases_report(
    item_codes: Sequence[str],
    from_date: date,
    to_date: date,
    salesperson_code: Optional[str] = None,
    source: Optional[PagedQuery] = None,
    cogs_units: Optional[Mapping[str, float]] = None,
    descriptions: Optional[Mapping[str, str]] = None,
    session_factory: Optional[SessionFactory] = None,
    **engine_kwargs: Any,
) -> ReportResult:
    """
    Customer purchases of ``item_codes`` between two dates.
    
    Item lookups are loaded from the database unless both maps are given.
    """
    if not item_codes:
        return ReportAssembler().assemble(REPORT_NAME, AggregateNode(key="__all__"), CollectedPages())
    
    filters = customer_purchases_filters(item_codes, from_date, to_date, salesperson_code)
    if cogs_units is None or descriptions is None:
        loaded_cogs, loaded_descriptions = await load_item_lookups(filters["item_codes"], session_factory)
        cogs_units = loaded_cogs if cogs_units is None else cogs_units
        descriptions = loaded_descriptions if descriptions is None else descriptions
    
    source = source or SqlPagedQuery(customer_purchases_statement, session_factory)
    engine = ReportEngine(source, customer_purchases_definition(cogs_units, descriptions), **engine_kwargs)
    return await engine.run_cached(filters)
