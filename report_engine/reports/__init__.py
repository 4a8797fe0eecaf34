"""
Reports Module
"""
from .assembler import MonthlyPoint, NodeMetrics, ReportAssembler, ReportNode, ReportResult
from .cache import ReportCache, cache_key_for
from .cogs_history import build_cogs_history_report
from .customer_purchases import build_customer_purchases_report
from .engine import Pagination, ReportDefinition, ReportEngine
from .region_turnover import REGION_TURNOVER, build_region_turnover_report
from .stock_status import build_stock_status_report

__all__ = [
    "MonthlyPoint",
    "NodeMetrics",
    "Pagination",
    "REGION_TURNOVER",
    "ReportAssembler",
    "ReportCache",
    "ReportDefinition",
    "ReportEngine",
    "ReportNode",
    "ReportResult",
    "build_cogs_history_report",
    "build_customer_purchases_report",
    "build_region_turnover_report",
    "build_stock_status_report",
    "cache_key_for",
]
