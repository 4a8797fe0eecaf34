"""
Aggregate Tree Structures

AggregateNode is a keyed tree node holding month buckets (leaves), child
nodes (inner levels) and running totals. Totals are maintained incrementally:
every change to a bucket or to a leaf's own values is turned into a
Contribution delta and added to each node on the row's path, so a parent's
total always equals the sum of its children's totals.

Costs are tracked together with the amount they cover (``costed_amount``),
so margins can be computed from sales whose cost is actually known.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from report_engine.analytics.derived_metrics import DerivedMetrics

YEAR_MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def format_year_month(year: int, month: int) -> str:
    """Build a YYYY-MM key"""
    if not 1 <= month <= 12:
        raise ValueError(f"month out of range: {month}")
    return f"{year:04d}-{month:02d}"


@dataclass(frozen=True)
class Contribution:
    """Values one slot (bucket or own values) adds to every node above it"""
    amount: float = 0.0
    quantity: float = 0.0
    cost: float = 0.0
    costed_amount: float = 0.0
    cost_entries: int = 0
    rows: int = 0
    
    @classmethod
    def of(cls, amount: float, quantity: float, cost: Optional[float], costed_amount: float, rows: int = 0) -> "Contribution":
        return cls(
            amount=amount,
            quantity=quantity,
            cost=cost or 0.0,
            costed_amount=costed_amount,
            cost_entries=0 if cost is None else 1,
            rows=rows,
        )
    
    def __sub__(self, other: "Contribution") -> "Contribution":
        return Contribution(
            amount=self.amount - other.amount,
            quantity=self.quantity - other.quantity,
            cost=self.cost - other.cost,
            costed_amount=self.costed_amount - other.costed_amount,
            cost_entries=self.cost_entries - other.cost_entries,
            rows=self.rows - other.rows,
        )


@dataclass
class MonthBucket:
    """Amount, quantity and cost for one year_month"""
    year_month: str
    amount: float = 0.0
    quantity: float = 0.0
    cost: Optional[float] = None
    costed_amount: float = 0.0
    
    def __post_init__(self) -> None:
        if not YEAR_MONTH_PATTERN.match(self.year_month):
            raise ValueError(f"year_month must be YYYY-MM, got {self.year_month!r}")
    
    def contribution(self) -> Contribution:
        return Contribution.of(self.amount, self.quantity, self.cost, self.costed_amount)


def _sum_costs(costs: List[Optional[float]]) -> Optional[float]:
    """Sum of known costs, None when no cost is known"""
    known = [cost for cost in costs if cost is not None]
    return sum(known) if known else None


@dataclass
class AggregateNode:
    """
    One node of an aggregate tree.
    
    Leaves hold month buckets and/or own values; inner nodes hold children.
    ``apply()`` adds a delta to the running totals, ``recompute()`` rebuilds
    them from the node's contents.
    """
    key: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    children: Dict[str, "AggregateNode"] = field(default_factory=dict)
    months: Dict[str, MonthBucket] = field(default_factory=dict)
    own_amount: float = 0.0
    own_quantity: float = 0.0
    own_cost: Optional[float] = None
    own_costed_amount: float = 0.0
    own_rows: int = 0
    total: float = 0.0
    total_quantity: float = 0.0
    cost_sum: float = 0.0
    costed_amount: float = 0.0
    cost_entries: int = 0
    row_count: int = 0
    metrics: Optional["DerivedMetrics"] = None
    
    @property
    def is_leaf(self) -> bool:
        return not self.children
    
    @property
    def total_cost(self) -> Optional[float]:
        """Summed known cost, None when no cost is known below this node"""
        return self.cost_sum if self.cost_entries else None
    
    def child(self, key: str, attributes: Optional[Dict[str, Any]] = None) -> "AggregateNode":
        """Resolve or create the child for ``key``"""
        node = self.children.get(key)
        if node is None:
            node = AggregateNode(key=key, attributes=dict(attributes or {}))
            self.children[key] = node
        elif attributes:
            for name, value in attributes.items():
                if node.attributes.get(name) is None and value is not None:
                    node.attributes[name] = value
        return node
    
    def bucket(self, year_month: str) -> MonthBucket:
        """Resolve or create the month bucket for ``year_month``"""
        bucket = self.months.get(year_month)
        if bucket is None:
            bucket = MonthBucket(year_month=year_month)
            self.months[year_month] = bucket
        return bucket
    
    def own_contribution(self) -> Contribution:
        return Contribution.of(self.own_amount, self.own_quantity, self.own_cost, self.own_costed_amount)
    
    def apply(self, delta: Contribution) -> None:
        """Add a change of one slot below (or on) this node to the totals"""
        self.total += delta.amount
        self.total_quantity += delta.quantity
        self.cost_sum += delta.cost
        self.costed_amount += delta.costed_amount
        self.cost_entries += delta.cost_entries
        self.row_count += delta.rows
    
    def recompute(self) -> None:
        """Rebuild totals from own values, month buckets and children"""
        self.total = 0.0
        self.total_quantity = 0.0
        self.cost_sum = 0.0
        self.costed_amount = 0.0
        self.cost_entries = 0
        self.row_count = 0
        
        self.apply(self.own_contribution())
        for bucket in self.months.values():
            self.apply(bucket.contribution())
        for child in self.children.values():
            self.apply(Contribution(
                amount=child.total,
                quantity=child.total_quantity,
                cost=child.cost_sum,
                costed_amount=child.costed_amount,
                cost_entries=child.cost_entries,
            ))
        self.row_count = self.own_rows + sum(child.row_count for child in self.children.values())
    
    def recompute_tree(self) -> None:
        """Recompute every node bottom-up"""
        for child in self.children.values():
            child.recompute_tree()
        self.recompute()
    
    def monthly(self) -> List[MonthBucket]:
        """
        Month series of this node, ascending by year_month.
        
        Inner nodes sum the series of their descendants.
        """
        merged: Dict[str, MonthBucket] = {}
        for bucket in self._month_sources():
            target = merged.get(bucket.year_month)
            if target is None:
                merged[bucket.year_month] = MonthBucket(
                    year_month=bucket.year_month,
                    amount=bucket.amount,
                    quantity=bucket.quantity,
                    cost=bucket.cost,
                    costed_amount=bucket.costed_amount,
                )
            else:
                target.amount += bucket.amount
                target.quantity += bucket.quantity
                target.cost = _sum_costs([target.cost, bucket.cost])
                target.costed_amount += bucket.costed_amount
        return [merged[key] for key in sorted(merged)]
    
    def _month_sources(self) -> Iterator[MonthBucket]:
        yield from self.months.values()
        for child in self.children.values():
            yield from child._month_sources()
    
    def sort_children(self, key: Callable[["AggregateNode"], Any], descending: bool = True) -> None:
        """Reorder children; ties keep first-seen order"""
        ordered = sorted(self.children.values(), key=key, reverse=descending)
        self.children = {node.key: node for node in ordered}
    
    def walk(self, depth: int = 0) -> Iterator[tuple]:
        """Yield (depth, node) for this node and all descendants, depth first"""
        yield depth, self
        for child in self.children.values():
            yield from child.walk(depth + 1)
    
    def leaves(self) -> Iterator["AggregateNode"]:
        for _, node in self.walk():
            if node.is_leaf:
                yield node
