"""
Stock Status Report

On-hand stock grouped posting group -> vendor -> item, with days of stock
and a critical/low/normal/unknown status per item derived from the trailing
period's consumption.
"""

from datetime import date, timedelta
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from sqlalchemy import Select, and_, func, select

from report_engine.aggregation.merger import Level, MergeMode, MergePlan, by_total
from report_engine.aggregation.nodes import AggregateNode
from report_engine.analytics.derived_metrics import (
    StockStatus,
    StockThresholds,
    apply_stock_metrics,
    assess_stock,
)
from report_engine.database.models import SalesLine, StockItem
from report_engine.ingestion.sources import PagedQuery, SessionFactory, SqlPagedQuery
from report_engine.reports.assembler import ReportResult
from report_engine.reports.engine import ReportDefinition, ReportEngine

REPORT_NAME = "stock_status"
UNCATEGORIZED = "Uncategorized"
UNKNOWN_VENDOR = "UNKNOWN"
UNKNOWN_VENDOR_NAME = "Unknown Vendor"


class StockRow(BaseModel):
    """One stocked item with its trailing consumption"""
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)
    
    item_code: str = Field(min_length=1)
    description: Optional[str] = None
    vendor_code: str = UNKNOWN_VENDOR
    vendor_name: str = UNKNOWN_VENDOR_NAME
    posting_group: str = UNCATEGORIZED
    category_description: Optional[str] = None
    adjusted_quantity: float = 0.0
    stock_value: float = 0.0
    last_period_consumption: float = 0.0
    
    @field_validator("vendor_code", "vendor_name", "posting_group", mode="before")
    @classmethod
    def blank_to_default(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return cls.model_fields[info.field_name].default
        return v
    
    @field_validator("adjusted_quantity", "stock_value", "last_period_consumption", mode="before")
    @classmethod
    def null_to_zero(cls, v: Any) -> Any:
        return 0.0 if v is None else v


def vendor_order(node: AggregateNode) -> Any:
    """Vendors by name, the unknown vendor last"""
    name = node.attributes.get("vendor_name") or UNKNOWN_VENDOR_NAME
    return (name == UNKNOWN_VENDOR_NAME, name.lower())


def stock_row_filter(
    thresholds: StockThresholds,
    hide_zero_stock: bool = False,
    only_critical_and_low: bool = False,
) -> Optional[Callable[[StockRow], bool]]:
    """Row filter for the zero-stock and critical/low toggles"""
    if not hide_zero_stock and not only_critical_and_low:
        return None
    
    def keep(row: StockRow) -> bool:
        if hide_zero_stock and row.adjusted_quantity <= 0:
            return False
        if only_critical_and_low:
            status = assess_stock(row.adjusted_quantity, row.last_period_consumption, thresholds).status
            return status in (StockStatus.CRITICAL, StockStatus.LOW)
        return True
    
    return keep


def stock_status_definition(
    thresholds: Optional[StockThresholds] = None,
    hide_zero_stock: bool = False,
    only_critical_and_low: bool = False,
) -> ReportDefinition:
    thresholds = thresholds or StockThresholds.from_settings()
    
    def classify(root: AggregateNode) -> None:
        apply_stock_metrics(root, thresholds)
    
    return ReportDefinition(
        name=REPORT_NAME,
        row_model=StockRow,
        plan=MergePlan(
            levels=[
                Level.of("posting_group", "category_description", default_key=UNCATEGORIZED),
                Level.of(
                    "vendor_code",
                    "vendor_name",
                    default_key=UNKNOWN_VENDOR,
                    sort_key=vendor_order,
                    descending=False,
                ),
                Level.of(
                    "item_code",
                    latest=("description", "adjusted_quantity", "last_period_consumption"),
                    sort_key=by_total,
                ),
            ],
            amount=lambda row: row.stock_value,
            quantity=lambda row: row.adjusted_quantity,
            mode=MergeMode.OVERWRITE,
        ),
        row_filter=stock_row_filter(thresholds, hide_zero_stock, only_critical_and_low),
        post_process=classify,
    )


def stock_status_filters(
    as_of: date,
    thresholds: StockThresholds,
    vendor_code: Optional[str] = None,
    posting_group: Optional[str] = None,
    hide_zero_stock: bool = False,
    only_critical_and_low: bool = False,
) -> Dict[str, Any]:
    """Normalized filters, including the thresholds that decide item statuses"""
    return {
        "as_of": as_of,
        "consumption_from": as_of - timedelta(days=thresholds.days_in_period - 1),
        "vendor_code": None if vendor_code in (None, "", "all") else vendor_code,
        "posting_group": posting_group or None,
        "hide_zero_stock": hide_zero_stock,
        "only_critical_and_low": only_critical_and_low,
        "critical_days": thresholds.critical_days,
        "low_days": thresholds.low_days,
        "max_days": thresholds.max_days,
        "days_in_period": thresholds.days_in_period,
    }


def stock_status_statement(filters: Mapping[str, Any]) -> Select:
    """Stock items joined with their consumption over the trailing period"""
    consumption = (
        select(
            SalesLine.item_code.label("item_code"),
            func.sum(SalesLine.quantity).label("consumption"),
        )
        .where(
            and_(
                SalesLine.posting_date >= filters["consumption_from"],
                SalesLine.posting_date <= filters["as_of"],
            )
        )
        .group_by(SalesLine.item_code)
        .subquery()
    )
    
    conditions = []
    if filters.get("vendor_code"):
        conditions.append(StockItem.vendor_code == filters["vendor_code"])
    if filters.get("posting_group"):
        conditions.append(StockItem.posting_group == filters["posting_group"])
    
    stmt = (
        select(
            StockItem.item_code,
            StockItem.description,
            StockItem.vendor_code,
            StockItem.vendor_name,
            StockItem.posting_group,
            StockItem.category_description,
            StockItem.adjusted_quantity,
            StockItem.stock_value,
            func.coalesce(consumption.c.consumption, 0).label("last_period_consumption"),
        )
        .outerjoin(consumption, consumption.c.item_code == StockItem.item_code)
        .order_by(StockItem.item_code)
    )
    if conditions:
        stmt = stmt.where(and_(*conditions))
    return stmt


async def build_stock_status_report(
    as_of: Optional[date] = None,
    vendor_code: Optional[str] = None,
    posting_group: Optional[str] = None,
    hide_zero_stock: bool = False,
    only_critical_and_low: bool = False,
    thresholds: Optional[StockThresholds] = None,
    source: Optional[PagedQuery] = None,
    session_factory: Optional[SessionFactory] = None,
    **engine_kwargs: Any,
) -> ReportResult:
    """Stock status as of a date (today by default)"""
    thresholds = thresholds or StockThresholds.from_settings()
    filters = stock_status_filters(
        as_of or date.today(),
        thresholds,
        vendor_code=vendor_code,
        posting_group=posting_group,
        hide_zero_stock=hide_zero_stock,
        only_critical_and_low=only_critical_and_low,
    )
    definition = stock_status_definition(thresholds, hide_zero_stock, only_critical_and_low)
    source = source or SqlPagedQuery(stock_status_statement, session_factory)
    engine = ReportEngine(source, definition, **engine_kwargs)
    return await engine.run_cached(filters)
