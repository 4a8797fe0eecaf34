"""
Report Engine

Wires one report run end to end:

    BatchScheduler -> PageFetcher (N pages) -> PartialFailureCollector
        -> AggregationMerger -> derived metrics -> ReportAssembler

A ReportDefinition describes what a report fetches and how its rows fold
into a tree; the engine supplies the batching, failure tolerance and
assembly shared by all reports.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Type

import structlog
from pydantic import BaseModel
from prometheus_client import Counter, Histogram
from redis.exceptions import RedisError

from report_engine.aggregation.merger import AggregationMerger, MergePlan
from report_engine.aggregation.nodes import AggregateNode
from report_engine.analytics.derived_metrics import apply_derived_metrics
from report_engine.config import EngineSettings, get_settings
from report_engine.ingestion.collector import CollectedPages
from report_engine.ingestion.page_fetcher import PageFetcher
from report_engine.ingestion.retry import RetryPolicy
from report_engine.ingestion.scheduler import BatchScheduler, ReportEngineError
from report_engine.ingestion.sources import PagedQuery
from report_engine.reports.assembler import ReportAssembler, ReportResult
from report_engine.reports.cache import ReportCache

logger = structlog.get_logger(__name__)


# =============================================================================
# METRICS
# =============================================================================

REPORTS_BUILT = Counter(
    "report_engine_reports_total",
    "Report runs by outcome",
    ["report", "outcome"],
)

REPORT_BUILD_TIME = Histogram(
    "report_engine_report_build_seconds",
    "Time spent building a report",
    ["report"],
)


class Pagination(str, Enum):
    """How pages are planned"""
    COUNTED = "counted"  # count query first, windowed concurrent pages
    SEQUENTIAL = "sequential"  # page until a short page, no count


@dataclass(frozen=True)
class ReportDefinition:
    """Everything report-specific about a run"""
    name: str
    row_model: Type[BaseModel]
    plan: MergePlan
    pagination: Pagination = Pagination.COUNTED
    row_filter: Optional[Callable[[Any], bool]] = None
    post_process: Optional[Callable[[AggregateNode], Any]] = None


class ReportEngine:
    """
    Build reports from a paged query source.
    
    Example:
        engine = ReportEngine(SqlPagedQuery(region_turnover_statement), REGION_TURNOVER)
        result = await engine.run({"from_date": start, "to_date": end})
        if result.is_partial:
            print(result.warning())
    """
    
    def __init__(
        self,
        source: PagedQuery,
        definition: ReportDefinition,
        settings: Optional[EngineSettings] = None,
        retry_policy: Optional[RetryPolicy] = None,
        assembler: Optional[ReportAssembler] = None,
        cache: Optional[ReportCache] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.source = source
        self.definition = definition
        self.settings = settings or get_settings().engine
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self.assembler = assembler or ReportAssembler()
        self.cache = cache
        self._sleep = sleep
    
    def _scheduler(self) -> BatchScheduler:
        fetcher = PageFetcher(
            self.source,
            self.definition.row_model,
            timeout=self.settings.page_timeout_seconds,
            retry_policy=self.retry_policy,
            report_name=self.definition.name,
            sleep=self._sleep,
        )
        return BatchScheduler(
            self.source,
            fetcher,
            settings=self.settings,
            report_name=self.definition.name,
            sleep=self._sleep,
        )
    
    async def collect(self, filters: Mapping[str, Any]) -> CollectedPages:
        """Fetch every page for ``filters``"""
        scheduler = self._scheduler()
        if self.definition.pagination == Pagination.SEQUENTIAL:
            return await scheduler.run_sequential(filters)
        return await scheduler.run(filters)
    
    def build(self, collected: CollectedPages) -> ReportResult:
        """Merge collected pages, derive metrics and assemble the result"""
        merger = AggregationMerger(self.definition.plan, row_filter=self.definition.row_filter)
        for page_index, rows in collected.pages():
            merger.merge_page(page_index, rows)
        root = merger.finalize()
        
        apply_derived_metrics(root)
        if self.definition.post_process is not None:
            self.definition.post_process(root)
        
        return self.assembler.assemble(self.definition.name, root, collected)
    
    async def run(self, filters: Mapping[str, Any]) -> ReportResult:
        """
        Build the report for ``filters``.
        
        Raises:
            DiscoveryError: If the count query fails
        """
        log = logger.bind(report=self.definition.name)
        started = time.perf_counter()
        log.info("Building report", filters={k: str(v) for k, v in filters.items()})
        
        try:
            collected = await self.collect(filters)
        except ReportEngineError as e:
            REPORTS_BUILT.labels(report=self.definition.name, outcome="failed").inc()
            log.error("Report aborted", error=str(e))
            raise
        
        result = self.build(collected)
        
        elapsed = time.perf_counter() - started
        REPORT_BUILD_TIME.labels(report=self.definition.name).observe(elapsed)
        REPORTS_BUILT.labels(
            report=self.definition.name,
            outcome="partial" if result.is_partial else "complete",
        ).inc()
        
        if result.is_partial:
            log.warning(
                "Report built with partial data",
                warning=result.warning(),
                duration_seconds=round(elapsed, 3),
            )
        else:
            log.info(
                "Report built",
                records=result.total_records,
                duration_seconds=round(elapsed, 3),
            )
        return result
    
    async def run_cached(self, filters: Mapping[str, Any]) -> ReportResult:
        """
        Serve the report through the read-through cache.
        
        Partial results are returned but never cached. Redis errors are
        logged and the report is built without the cache.
        """
        if self.cache is None:
            return await self.run(filters)
        
        log = logger.bind(report=self.definition.name)
        try:
            cached = await self.cache.get(self.definition.name, filters)
        except RedisError as e:
            log.warning("Report cache unavailable, building uncached", error=str(e))
            return await self.run(filters)
        
        if cached is not None:
            log.debug("Returning cached report")
            return cached
        
        result = await self.run(filters)
        if result.is_partial:
            return result
        
        try:
            await self.cache.set(self.definition.name, filters, result)
        except RedisError as e:
            log.warning("Failed to cache report", error=str(e))
        return result
