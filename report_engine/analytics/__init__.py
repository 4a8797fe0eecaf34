"""
Analytics Module
"""
from .derived_metrics import (
    DerivedMetrics,
    StockAssessment,
    StockStatus,
    StockThresholds,
    apply_derived_metrics,
    apply_stock_metrics,
    assess_stock,
    days_of_stock,
    margin_percent,
    month_over_month,
    period_variance,
    running_total,
    variance_percent,
)

__all__ = [
    "DerivedMetrics",
    "StockAssessment",
    "StockStatus",
    "StockThresholds",
    "apply_derived_metrics",
    "apply_stock_metrics",
    "assess_stock",
    "days_of_stock",
    "margin_percent",
    "month_over_month",
    "period_variance",
    "running_total",
    "variance_percent",
]
