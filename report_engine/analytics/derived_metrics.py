"""
Derived Metrics

Values that can only be computed once every page of a report is merged:

- variance percent between two points of a series
- running totals over an ordered series
- margin percent from summed sales and summed cost
- days of stock and stock status from trailing consumption

Division by zero never raises. It resolves to None, or to the configured
days-of-stock cap.
"""

from dataclasses import dataclass, field
from enum import Enum
from itertools import accumulate
from typing import Dict, List, Optional, Sequence

from report_engine.aggregation.nodes import AggregateNode
from report_engine.config import StockSettings, get_settings


class StockStatus(str, Enum):
    """Stock coverage classification"""
    CRITICAL = "critical"
    LOW = "low"
    NORMAL = "normal"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class StockThresholds:
    """Day thresholds for stock classification"""
    critical_days: float = 7
    low_days: float = 30
    max_days: float = 999
    days_in_period: int = 30
    
    def __post_init__(self) -> None:
        if not 0 < self.critical_days < self.low_days <= self.max_days:
            raise ValueError("Thresholds must satisfy 0 < critical_days < low_days <= max_days")
        if self.days_in_period <= 0:
            raise ValueError("days_in_period must be positive")
    
    @classmethod
    def from_settings(cls, stock: Optional[StockSettings] = None) -> "StockThresholds":
        stock = stock or get_settings().stock
        return cls(
            critical_days=stock.critical_days,
            low_days=stock.low_days,
            max_days=stock.max_days_of_stock,
            days_in_period=stock.days_in_period,
        )


@dataclass(frozen=True)
class StockAssessment:
    """Days of stock and the resulting status for one item"""
    days_of_stock: Optional[float]
    status: StockStatus


@dataclass
class DerivedMetrics:
    """Metrics attached to a node after merging"""
    variance_percent: Optional[float] = None
    margin_percent: Optional[float] = None
    days_of_stock: Optional[float] = None
    stock_status: Optional[StockStatus] = None
    running_totals: List[float] = field(default_factory=list)
    status_counts: Dict[str, int] = field(default_factory=dict)


def variance_percent(baseline: Optional[float], current: Optional[float]) -> Optional[float]:
    """
    Percent change from ``baseline`` to ``current``.
    
    Returns None when the baseline is zero or either value is missing.
    """
    if baseline is None or current is None or baseline == 0:
        return None
    return ((current - baseline) / baseline) * 100


def period_variance(values: Sequence[float]) -> Optional[float]:
    """Variance percent between the first and last value of a series"""
    if len(values) < 2:
        return None
    return variance_percent(values[0], values[-1])


def month_over_month(values: Sequence[float]) -> List[Optional[float]]:
    """Variance percent of each value against its predecessor (first is None)"""
    changes: List[Optional[float]] = [None] if values else []
    for previous, current in zip(values, values[1:]):
        changes.append(variance_percent(previous, current))
    return changes


def running_total(values: Sequence[float]) -> List[float]:
    """Prefix sums of an ordered series"""
    return list(accumulate(values))


def margin_percent(amount: float, cost: Optional[float]) -> Optional[float]:
    """
    Margin as a percent of sales.
    
    None when there are no sales (amount <= 0) or no known cost, so "no
    sales" is never confused with "zero margin".
    """
    if cost is None or amount is None or amount <= 0:
        return None
    return ((amount - cost) / amount) * 100


def days_of_stock(
    adjusted_quantity: float,
    consumption: float,
    thresholds: Optional[StockThresholds] = None,
) -> Optional[float]:
    """Days the current stock lasts at the trailing consumption rate"""
    return assess_stock(adjusted_quantity, consumption, thresholds).days_of_stock


def assess_stock(
    adjusted_quantity: float,
    consumption: float,
    thresholds: Optional[StockThresholds] = None,
) -> StockAssessment:
    """
    Classify one item's stock coverage.
    
    Rules:
        consumption > 0           -> days = quantity / daily rate (capped),
                                     status by critical/low thresholds
        no consumption, stock > 0 -> days = cap, normal
        no consumption, no stock  -> days = None, unknown
    
    Negative quantities count as zero stock.
    """
    thresholds = thresholds or StockThresholds.from_settings()
    quantity = max(adjusted_quantity or 0.0, 0.0)
    consumption = consumption or 0.0
    
    if consumption > 0:
        daily_rate = consumption / thresholds.days_in_period
        days = min(quantity / daily_rate, thresholds.max_days)
        if days < thresholds.critical_days:
            status = StockStatus.CRITICAL
        elif days < thresholds.low_days:
            status = StockStatus.LOW
        else:
            status = StockStatus.NORMAL
        return StockAssessment(days_of_stock=days, status=status)
    
    if quantity > 0:
        return StockAssessment(days_of_stock=thresholds.max_days, status=StockStatus.NORMAL)
    
    return StockAssessment(days_of_stock=None, status=StockStatus.UNKNOWN)


def apply_derived_metrics(root: AggregateNode) -> AggregateNode:
    """
    Attach variance, running totals and margin to every node below ``root``.
    
    The root's own metrics describe the whole report. Margins only cover
    sales whose cost is known (``costed_amount``), so uncosted sales neither
    inflate nor dilute them.
    """
    for _, node in root.walk():
        amounts = [bucket.amount for bucket in node.monthly()]
        metrics = node.metrics or DerivedMetrics()
        metrics.variance_percent = period_variance(amounts)
        metrics.running_totals = running_total(amounts)
        metrics.margin_percent = margin_percent(node.costed_amount, node.total_cost)
        node.metrics = metrics
    return root


def apply_stock_metrics(
    root: AggregateNode,
    thresholds: StockThresholds,
    quantity_attribute: str = "adjusted_quantity",
    consumption_attribute: str = "last_period_consumption",
) -> AggregateNode:
    """
    Classify every leaf and count statuses on every inner node.
    
    Leaves are expected to carry the quantity and consumption attributes.
    """
    leaves = [node for depth, node in root.walk() if depth > 0 and node.is_leaf]
    for leaf in leaves:
        assessment = assess_stock(
            leaf.attributes.get(quantity_attribute) or 0.0,
            leaf.attributes.get(consumption_attribute) or 0.0,
            thresholds,
        )
        metrics = leaf.metrics or DerivedMetrics()
        metrics.days_of_stock = assessment.days_of_stock
        metrics.stock_status = assessment.status
        metrics.status_counts = {assessment.status.value: 1}
        leaf.metrics = metrics
    
    _count_statuses(root)
    return root


def _count_statuses(node: AggregateNode, is_root: bool = True) -> Dict[str, int]:
    if node.is_leaf and not is_root:
        return dict(node.metrics.status_counts) if node.metrics else {}

    counts = {status.value: 0 for status in StockStatus}
    for child in node.children.values():
        for status, count in _count_statuses(child, is_root=False).items():
            counts[status] = counts.get(status, 0) + count
    
    metrics = node.metrics or DerivedMetrics()
    metrics.status_counts = counts
    node.metrics = metrics
    return counts
