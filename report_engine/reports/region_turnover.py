"""
Region Turnover Report

Monthly turnover grouped region -> customer -> month. The source returns one
row per (region, customer, month), so buckets are merged in OVERWRITE mode.
"""

from datetime import date
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy import Select, and_, extract, func, select

from report_engine.aggregation.merger import Level, MergeMode, MergePlan
from report_engine.aggregation.nodes import format_year_month
from report_engine.database.models import SalesLine
from report_engine.ingestion.sources import PagedQuery, SessionFactory, SqlPagedQuery, group_key
from report_engine.reports.assembler import ReportResult
from report_engine.reports.engine import ReportDefinition, ReportEngine

UNASSIGNED_REGION = "Unassigned"


class RegionTurnoverRow(BaseModel):
    """One customer's turnover in one region and month"""
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)
    
    region: str = UNASSIGNED_REGION
    customer_code: str = Field(min_length=1)
    customer_name: Optional[str] = None
    search_name: Optional[str] = None
    salesperson_code: Optional[str] = None
    year_month: str = Field(pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
    monthly_turnover: float = 0.0
    
    @model_validator(mode="before")
    @classmethod
    def build_year_month(cls, data: Any) -> Any:
        """Accept separate year/month columns in place of year_month"""
        if isinstance(data, Mapping) and not data.get("year_month") and data.get("year") and data.get("month"):
            data = dict(data)
            data["year_month"] = format_year_month(int(data["year"]), int(data["month"]))
        return data
    
    @field_validator("region", mode="before")
    @classmethod
    def default_region(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return UNASSIGNED_REGION
        return v
    
    @field_validator("monthly_turnover", mode="before")
    @classmethod
    def null_turnover(cls, v: Any) -> Any:
        return 0.0 if v is None else v


REGION_TURNOVER = ReportDefinition(
    name="region_turnover",
    row_model=RegionTurnoverRow,
    plan=MergePlan(
        levels=[
            Level.of("region", default_key=UNASSIGNED_REGION),
            Level.of("customer_code", "customer_name", "search_name", "salesperson_code"),
        ],
        amount=lambda row: row.monthly_turnover,
        year_month=lambda row: row.year_month,
        mode=MergeMode.OVERWRITE,
    ),
)


def region_turnover_filters(
    from_date: date,
    to_date: date,
    salesperson_code: Optional[str] = None,
) -> Dict[str, Any]:
    """Normalize report filters ("all" salespeople means no filter)"""
    if from_date > to_date:
        raise ValueError("from_date must not be after to_date")
    return {
        "from_date": from_date,
        "to_date": to_date,
        "salesperson_code": None if salesperson_code in (None, "", "all") else salesperson_code,
    }


def region_turnover_statement(filters: Mapping[str, Any]) -> Select:
    """Turnover per region, customer and month, ordered for stable paging"""
    region = group_key(SalesLine.region, UNASSIGNED_REGION)
    customer_code = func.trim(SalesLine.customer_code)
    year = extract("year", SalesLine.posting_date)
    month = extract("month", SalesLine.posting_date)
    
    conditions = [
        SalesLine.posting_date >= filters["from_date"],
        SalesLine.posting_date <= filters["to_date"],
    ]
    if filters.get("salesperson_code"):
        conditions.append(SalesLine.salesperson_code == filters["salesperson_code"])
    
    return (
        select(
            region.label("region"),
            customer_code.label("customer_code"),
            func.max(SalesLine.customer_name).label("customer_name"),
            func.max(SalesLine.search_name).label("search_name"),
            func.max(SalesLine.salesperson_code).label("salesperson_code"),
            year.label("year"),
            month.label("month"),
            func.sum(SalesLine.amount).label("monthly_turnover"),
        )
        .where(and_(*conditions))
        .group_by(region, customer_code, year, month)
        .order_by(region, customer_code, year, month)
    )


async def build_region_turnover_report(
    from_date: date,
    to_date: date,
    salesperson_code: Optional[str] = None,
    source: Optional[PagedQuery] = None,
    session_factory: Optional[SessionFactory] = None,
    **engine_kwargs: Any,
) -> ReportResult:
    """
    Region turnover for a date range.
    
    Args:
        from_date: First posting date (inclusive)
        to_date: Last posting date (inclusive)
        salesperson_code: Restrict to one salesperson; None or "all" for everyone
        source: Paged query to use instead of the SQL source
        session_factory: Session factory for the SQL source (defaults to get_db)
        **engine_kwargs: Passed to ReportEngine (settings, cache, ...)
    """
    filters = region_turnover_filters(from_date, to_date, salesperson_code)
    engine = ReportEngine(
        source or SqlPagedQuery(region_turnover_statement, session_factory),
        REGION_TURNOVER,
        **engine_kwargs,
    )
    return await engine.run_cached(filters)
