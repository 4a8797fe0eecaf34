"""
Aggregation Module
"""
from .merger import AggregationMerger, Level, MergeMode, MergePlan, by_total
from .nodes import AggregateNode, Contribution, MonthBucket, format_year_month

__all__ = [
    "AggregateNode",
    "AggregationMerger",
    "Contribution",
    "Level",
    "MergeMode",
    "MergePlan",
    "MonthBucket",
    "by_total",
    "format_year_month",
]
