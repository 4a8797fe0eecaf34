"""
Report Assembler

Turns a finalized aggregate tree and the page collection outcome into the
ReportResult consumed by table/chart renderers and export utilities.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from report_engine.aggregation.nodes import AggregateNode
from report_engine.analytics.derived_metrics import DerivedMetrics, StockStatus
from report_engine.ingestion.collector import CollectedPages

logger = structlog.get_logger(__name__)


class ReportModel(BaseModel):
    """Output models serialize with camelCase keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MonthlyPoint(ReportModel):
    """One month of a node's series"""
    year_month: str
    amount: float
    quantity: float = 0.0


class NodeMetrics(ReportModel):
    """Derived metrics of one node"""
    variance_percent: Optional[float] = None
    margin_percent: Optional[float] = None
    days_of_stock: Optional[float] = None
    stock_status: Optional[StockStatus] = None
    running_totals: List[float] = Field(default_factory=list)
    status_counts: Dict[str, int] = Field(default_factory=dict)


class ReportNode(ReportModel):
    """A group or child entry of the report"""
    key: str
    total: float
    quantity: float = 0.0
    cost: Optional[float] = None
    row_count: int = 0
    child_count: int = 0
    attributes: Dict[str, Any] = Field(default_factory=dict)
    monthly: List[MonthlyPoint] = Field(default_factory=list)
    metrics: Optional[NodeMetrics] = None
    children: List["ReportNode"] = Field(default_factory=list)


ReportNode.model_rebuild()


class ReportResult(ReportModel):
    """
    Final report response.
    
    ``failed_pages`` is always present so consumers can flag partial data.
    """
    report: str
    groups: List[ReportNode] = Field(default_factory=list)
    grand_total: float = 0.0
    grand_quantity: float = 0.0
    total_records: int = 0
    total_pages: int = 0
    failed_pages: int = 0
    rejected_rows: int = 0
    metrics: Optional[NodeMetrics] = None
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    
    @computed_field
    @property
    def is_partial(self) -> bool:
        return self.failed_pages > 0
    
    def warning(self) -> Optional[str]:
        """Banner text for partial reports"""
        if not self.failed_pages:
            return None
        return f"{self.failed_pages} of {self.total_pages} pages failed"
    
    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready dict with camelCase keys"""
        return self.model_dump(mode="json", by_alias=True)


def _metrics_out(metrics: Optional[DerivedMetrics]) -> Optional[NodeMetrics]:
    if metrics is None:
        return None
    return NodeMetrics(
        variance_percent=metrics.variance_percent,
        margin_percent=metrics.margin_percent,
        days_of_stock=metrics.days_of_stock,
        stock_status=metrics.stock_status,
        running_totals=list(metrics.running_totals),
        status_counts=dict(metrics.status_counts),
    )


class ReportAssembler:
    """
    Build ReportResult objects.
    
    Example:
        result = ReportAssembler().assemble("region_turnover", root, collected)
    """
    
    def __init__(self, include_monthly_on_groups: bool = True):
        self.include_monthly_on_groups = include_monthly_on_groups
    
    def assemble(
        self,
        report_name: str,
        root: AggregateNode,
        collected: CollectedPages,
    ) -> ReportResult:
        groups = [self._node_out(node, depth=1) for node in root.children.values()]
        
        result = ReportResult(
            report=report_name,
            groups=groups,
            grand_total=root.total,
            grand_quantity=root.total_quantity,
            total_records=collected.total_records,
            total_pages=collected.total_pages,
            failed_pages=collected.failed_pages,
            rejected_rows=collected.rejected_rows,
            metrics=_metrics_out(root.metrics),
        )
        
        logger.info(
            "Report assembled",
            report=report_name,
            groups=len(groups),
            grand_total=round(result.grand_total, 2),
            failed_pages=result.failed_pages,
            total_pages=result.total_pages,
        )
        return result
    
    def _node_out(self, node: AggregateNode, depth: int) -> ReportNode:
        monthly = []
        if node.is_leaf or self.include_monthly_on_groups:
            monthly = [
                MonthlyPoint(year_month=bucket.year_month, amount=bucket.amount, quantity=bucket.quantity)
                for bucket in node.monthly()
            ]
        
        return ReportNode(
            key=node.key,
            total=node.total,
            quantity=node.total_quantity,
            cost=node.total_cost,
            row_count=node.row_count,
            child_count=len(node.children),
            attributes=dict(node.attributes),
            monthly=monthly,
            metrics=_metrics_out(node.metrics),
            children=[self._node_out(child, depth + 1) for child in node.children.values()],
        )
