"""
Aggregation Merger

Folds flat rows into a nested AggregateNode tree, e.g.

    region -> customer -> month
    item   -> customer -> month

Each row resolves (or creates) one node per level and one month bucket on
the leaf. The change a row makes to that bucket is added as a delta to every
node on the row's path, so merging costs O(depth) per row regardless of how
many siblings a node has. Sorting happens once, in finalize().
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Set, Tuple

import structlog

from report_engine.aggregation.nodes import AggregateNode, Contribution

logger = structlog.get_logger(__name__)

ROOT_KEY = "__all__"


class MergeMode(str, Enum):
    """How a row's values combine with an existing bucket"""
    OVERWRITE = "overwrite"  # one row per bucket key, replays replace
    ACCUMULATE = "accumulate"  # several rows per bucket key (transactions)


def by_total(node: AggregateNode) -> Any:
    return node.total


@dataclass(frozen=True)
class Level:
    """
    One dimension of the tree.
    
    ``attributes`` are kept from the first row that has a value for them,
    ``latest`` attributes take the last non-null value seen.
    """
    name: str
    key: Callable[[Any], Optional[str]]
    attributes: Tuple[str, ...] = ()
    latest: Tuple[str, ...] = ()
    default_key: str = "unknown"
    sort_key: Callable[[AggregateNode], Any] = by_total
    descending: bool = True
    
    @classmethod
    def of(cls, field_name: str, *attributes: str, **kwargs) -> "Level":
        """Level keyed by a row field, carrying the named row fields as attributes"""
        return cls(
            name=field_name,
            key=lambda row: getattr(row, field_name),
            attributes=tuple(attributes),
            **kwargs,
        )
    
    def resolve_key(self, row: Any) -> str:
        value = self.key(row)
        if value is None or (isinstance(value, str) and not value.strip()):
            return self.default_key
        return str(value)


def _zero(row: Any) -> float:
    return 0.0


def _no_cost(row: Any) -> Optional[float]:
    return None


@dataclass(frozen=True)
class MergePlan:
    """Dimensions and value extractors for one report"""
    levels: Sequence[Level]
    amount: Callable[[Any], float]
    quantity: Callable[[Any], float] = _zero
    cost: Callable[[Any], Optional[float]] = _no_cost
    year_month: Optional[Callable[[Any], str]] = None
    mode: MergeMode = MergeMode.OVERWRITE
    
    def __post_init__(self) -> None:
        if not self.levels:
            raise ValueError("A merge plan needs at least one level")


class AggregationMerger:
    """
    Build an aggregate tree from rows.
    
    Not safe for concurrent use: feed it pages one at a time.
    
    Example:
        merger = AggregationMerger(plan)
        for page_index, rows in collected.pages():
            merger.merge_page(page_index, rows)
        root = merger.finalize()
    """
    
    def __init__(self, plan: MergePlan, row_filter: Optional[Callable[[Any], bool]] = None):
        self.plan = plan
        self.row_filter = row_filter
        self.root = AggregateNode(key=ROOT_KEY)
        self.rows_merged = 0
        self.rows_skipped = 0
        self._merged_pages: Set[int] = set()
        self._finalized = False
    
    def merge_page(self, page_index: int, rows: Iterable[Any]) -> bool:
        """
        Merge the rows of one page.
        
        Returns:
            False if this page index was merged before (rows are ignored)
        """
        if page_index in self._merged_pages:
            logger.debug("Page already merged, skipping replay", page=page_index)
            return False
        self._merged_pages.add(page_index)
        self.merge_rows(rows)
        return True
    
    def merge_rows(self, rows: Iterable[Any]) -> None:
        for row in rows:
            self.merge_row(row)
    
    def merge_row(self, row: Any) -> None:
        """Fold one row into the tree and refresh totals along its path"""
        if self._finalized:
            raise RuntimeError("Cannot merge rows after finalize()")
        if self.row_filter is not None and not self.row_filter(row):
            self.rows_skipped += 1
            return
        
        path = [self.root]
        node = self.root
        for level in self.plan.levels:
            node = node.child(level.resolve_key(row), self._attributes(level.attributes, row))
            for name, value in self._attributes(level.latest, row).items():
                if value is not None:
                    node.attributes[name] = value
            path.append(node)
        
        amount = float(self.plan.amount(row) or 0)
        quantity = float(self.plan.quantity(row) or 0)
        cost = self.plan.cost(row)
        cost = float(cost) if cost is not None else None
        
        if self.plan.year_month is not None:
            delta = self._merge_bucket(node, self.plan.year_month(row), amount, quantity, cost)
        else:
            delta = self._merge_own(node, amount, quantity, cost)
        
        for step in path:
            step.apply(delta)
        self.rows_merged += 1
    
    def _merge_bucket(
        self,
        leaf: AggregateNode,
        year_month: str,
        amount: float,
        quantity: float,
        cost: Optional[float],
    ) -> Contribution:
        is_new = year_month not in leaf.months
        bucket = leaf.bucket(year_month)
        before = bucket.contribution()
        costed = amount if cost is not None else 0.0
        
        if self.plan.mode == MergeMode.OVERWRITE:
            bucket.amount = amount
            bucket.quantity = quantity
            bucket.cost = cost
            bucket.costed_amount = costed
            rows = 1 if is_new else 0
        else:
            bucket.amount += amount
            bucket.quantity += quantity
            if cost is not None:
                bucket.cost = (bucket.cost or 0.0) + cost
            bucket.costed_amount += costed
            rows = 1
        
        leaf.own_rows += rows
        return replace(bucket.contribution() - before, rows=rows)
    
    def _merge_own(self, leaf: AggregateNode, amount: float, quantity: float, cost: Optional[float]) -> Contribution:
        before = leaf.own_contribution()
        previous_rows = leaf.own_rows
        costed = amount if cost is not None else 0.0
        
        if self.plan.mode == MergeMode.OVERWRITE:
            leaf.own_amount = amount
            leaf.own_quantity = quantity
            leaf.own_cost = cost
            leaf.own_costed_amount = costed
            leaf.own_rows = 1
        else:
            leaf.own_amount += amount
            leaf.own_quantity += quantity
            if cost is not None:
                leaf.own_cost = (leaf.own_cost or 0.0) + cost
            leaf.own_costed_amount += costed
            leaf.own_rows += 1
        
        return replace(leaf.own_contribution() - before, rows=leaf.own_rows - previous_rows)
    
    @staticmethod
    def _attributes(names: Sequence[str], row: Any) -> Dict[str, Any]:
        return {name: getattr(row, name, None) for name in names}
    
    def finalize(self) -> AggregateNode:
        """
        Sort every level as configured and return the root.
        
        Sorting is stable, so equal totals keep first-seen order.
        """
        if not self._finalized:
            self._sort(self.root, 0)
            self._finalized = True
            logger.debug(
                "Merge finalized",
                groups=len(self.root.children),
                rows_merged=self.rows_merged,
                rows_skipped=self.rows_skipped,
            )
        return self.root
    
    def _sort(self, node: AggregateNode, depth: int) -> None:
        if depth >= len(self.plan.levels):
            return
        level = self.plan.levels[depth]
        node.sort_children(level.sort_key, descending=level.descending)
        for child in node.children.values():
            self._sort(child, depth + 1)
