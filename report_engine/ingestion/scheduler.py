"""
Batch Scheduler

Plans pages from a preliminary count and runs them in windows of bounded
concurrency. Each window is awaited as a whole (all settled) before the next
one starts, with a short pause in between so the backing store is not
flooded.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence

import structlog

from report_engine.config import EngineSettings, get_settings
from report_engine.ingestion.collector import CollectedPages, PartialFailureCollector
from report_engine.ingestion.page_fetcher import PageFailure, PageFetcher, PageRequest, PageSuccess
from report_engine.ingestion.sources import PagedQuery

logger = structlog.get_logger(__name__)


class ReportEngineError(Exception):
    """Base error for failures that abort a whole report"""


class DiscoveryError(ReportEngineError):
    """The count or key-discovery query failed, so pages cannot be planned"""
    
    def __init__(self, report_name: str, reason: str):
        self.report_name = report_name
        self.reason = reason
        super().__init__(f"Discovery failed for report '{report_name}': {reason}")


def plan_pages(total: int, page_size: int, filters: Optional[Mapping[str, Any]] = None) -> List[PageRequest]:
    """
    Split ``total`` records into page requests of ``page_size``.
    
    Example:
        plan_pages(1200, 500) -> offsets 0, 500, 1000 (the last one holds 200)
    """
    if page_size <= 0:
        raise ValueError("page_size must be positive")
    if total < 0:
        raise ValueError("total cannot be negative")
    
    page_count = -(-total // page_size)
    return [
        PageRequest(page_index=i, offset=i * page_size, limit=page_size, filters=filters or {})
        for i in range(page_count)
    ]


def split_windows(requests: Sequence[PageRequest], window_size: int) -> List[List[PageRequest]]:
    """Group page requests into consecutive windows of ``window_size``"""
    if window_size <= 0:
        raise ValueError("window_size must be positive")
    return [list(requests[i:i + window_size]) for i in range(0, len(requests), window_size)]


class BatchScheduler:
    """
    Run page fetches with a concurrency cap.
    
    Example:
        scheduler = BatchScheduler(source, fetcher, report_name="region_turnover")
        collected = await scheduler.run({"from_date": start, "to_date": end})
    """
    
    def __init__(
        self,
        source: PagedQuery,
        fetcher: PageFetcher,
        settings: Optional[EngineSettings] = None,
        report_name: str = "adhoc",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        settings = settings or get_settings().engine
        self.source = source
        self.fetcher = fetcher
        self.page_size = settings.page_size
        self.max_concurrency = settings.max_concurrency
        self.window_delay = settings.window_delay_seconds
        self.max_sequential_pages = settings.max_sequential_pages
        self.report_name = report_name
        self._sleep = sleep
    
    async def discover_total(self, filters: Mapping[str, Any]) -> int:
        """
        Run the count query.
        
        Raises:
            DiscoveryError: If the count fails or is not a non-negative integer
        """
        try:
            total = await self.source.count(filters)
        except Exception as e:
            logger.error("Count query failed", report=self.report_name, error=str(e))
            raise DiscoveryError(self.report_name, f"{type(e).__name__}: {e}") from e
        
        if isinstance(total, bool) or not isinstance(total, int) or total < 0:
            raise DiscoveryError(self.report_name, f"invalid record count {total!r}")
        return total
    
    async def run(self, filters: Mapping[str, Any]) -> CollectedPages:
        """
        Count, plan and fetch all pages for ``filters``.
        
        Returns:
            CollectedPages with the rows of every successful page
        """
        total = await self.discover_total(filters)
        plan = plan_pages(total, self.page_size, filters)
        collector = PartialFailureCollector(
            total_pages=len(plan),
            total_records=total,
            report_name=self.report_name,
        )
        
        logger.info(
            "Pages planned",
            report=self.report_name,
            total_records=total,
            pages=len(plan),
            batching_required=len(plan) > 1,
        )
        
        if not plan:
            return collector.result()
        
        if len(plan) == 1:
            collector.add(await self.fetcher.fetch(plan[0]))
            return collector.result()
        
        windows = split_windows(plan, self.max_concurrency)
        for window_number, window in enumerate(windows, 1):
            outcomes = await asyncio.gather(
                *(self.fetcher.fetch(request) for request in window),
                return_exceptions=True,
            )
            for request, outcome in zip(window, outcomes):
                if isinstance(outcome, BaseException):
                    outcome = PageFailure(
                        page_index=request.page_index,
                        reason=f"{type(outcome).__name__}: {outcome}",
                    )
                collector.add(outcome)
            
            logger.debug(
                f"Window {window_number}/{len(windows)} settled",
                report=self.report_name,
                pages=[request.page_index for request in window],
            )
            
            if window_number < len(windows) and self.window_delay > 0:
                await self._sleep(self.window_delay)
        
        return collector.result()
    
    async def run_sequential(self, filters: Mapping[str, Any], max_pages: Optional[int] = None) -> CollectedPages:
        """
        Fetch pages one after another until a short page is returned.
        
        Used where no count query exists. A failed page ends pagination, since
        the end of the result set is then unknown; it is recorded like any
        other page failure.
        """
        max_pages = max_pages or self.max_sequential_pages
        collector = PartialFailureCollector(report_name=self.report_name)
        fetched_rows = 0
        
        for page_index in range(max_pages):
            request = PageRequest(
                page_index=page_index,
                offset=page_index * self.page_size,
                limit=self.page_size,
                filters=filters,
            )
            result = await self.fetcher.fetch(request)
            collector.add(result)
            
            if not isinstance(result, PageSuccess):
                logger.warning(
                    "Sequential pagination stopped at failed page",
                    report=self.report_name,
                    page=page_index,
                )
                break
            
            returned = len(result.rows) + result.rejected_rows
            fetched_rows += returned
            if returned < self.page_size:
                break
        else:
            logger.warning(
                "Sequential pagination hit the page limit",
                report=self.report_name,
                max_pages=max_pages,
            )
        
        collector.total_records = fetched_rows
        return collector.result()
