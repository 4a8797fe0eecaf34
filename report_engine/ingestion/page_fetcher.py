"""
Page Fetcher

Issues one bounded page request against a paged query source and turns the
outcome into a typed result:

- PageSuccess: validated rows (rows failing the row schema are rejected
  and counted, never passed on)
- PageFailure: page index and a human-readable reason

Transport errors, remote errors and timeouts never propagate past fetch().
"""

import asyncio
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Generic, Mapping, Optional, Tuple, Type, TypeVar, Union

import structlog
from pydantic import BaseModel, ValidationError
from prometheus_client import Counter, Histogram

from report_engine.ingestion.retry import NO_RETRY, RetryPolicy
from report_engine.ingestion.sources import PagedQuery

logger = structlog.get_logger(__name__)

RowT = TypeVar("RowT", bound=BaseModel)


# =============================================================================
# METRICS
# =============================================================================

PAGES_FETCHED = Counter(
    "report_engine_pages_total",
    "Page requests by final outcome",
    ["report", "status"],
)

ROWS_REJECTED = Counter(
    "report_engine_rows_rejected_total",
    "Rows dropped because they did not match the row schema",
    ["report"],
)

PAGE_FETCH_TIME = Histogram(
    "report_engine_page_fetch_seconds",
    "Time spent fetching a page, retries included",
    ["report"],
)


# =============================================================================
# PAGE MODELS
# =============================================================================

@dataclass(frozen=True)
class PageRequest:
    """One bounded slice of a result set"""
    page_index: int
    offset: int
    limit: int
    filters: Mapping[str, Any] = field(default_factory=dict)
    
    def __post_init__(self) -> None:
        if self.page_index < 0:
            raise ValueError("page_index cannot be negative")
        if self.offset < 0:
            raise ValueError("offset cannot be negative")
        if self.limit <= 0:
            raise ValueError("limit must be positive")
        if self.offset % self.limit != 0:
            raise ValueError(f"offset {self.offset} is not a multiple of limit {self.limit}")
        object.__setattr__(self, "filters", MappingProxyType(dict(self.filters)))


@dataclass(frozen=True)
class PageSuccess(Generic[RowT]):
    """Rows of one page that passed validation"""
    page_index: int
    rows: Tuple[RowT, ...]
    rejected_rows: int = 0
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class PageFailure:
    """A page that could not be retrieved"""
    page_index: int
    reason: str
    attempts: int = 1
    ok: bool = field(default=False, init=False)


PageResult = Union[PageSuccess, PageFailure]


class PageFetcher(Generic[RowT]):
    """
    Fetch single pages and validate their rows.
    
    Example:
        fetcher = PageFetcher(source, RegionTurnoverRow, timeout=30)
        result = await fetcher.fetch(PageRequest(page_index=0, offset=0, limit=500))
    """
    
    def __init__(
        self,
        source: PagedQuery,
        row_model: Type[RowT],
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        report_name: str = "adhoc",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.source = source
        self.row_model = row_model
        self.timeout = timeout
        self.retry_policy = retry_policy or NO_RETRY
        self.report_name = report_name
        self._sleep = sleep
    
    async def fetch(self, request: PageRequest) -> PageResult:
        """
        Fetch and validate one page.
        
        Args:
            request: Page to fetch
            
        Returns:
            PageSuccess with validated rows, or PageFailure with the reason
        """
        started = time.perf_counter()
        reason = "no attempt made"
        attempts = 0
        
        for attempt in range(1, self.retry_policy.max_attempts + 1):
            attempts = attempt
            try:
                raw = await asyncio.wait_for(
                    self.source.query(request.filters, request.offset, request.limit),
                    timeout=self.timeout,
                )
                result = self._parse(request, raw)
            except asyncio.TimeoutError:
                reason = f"timed out after {self.timeout}s"
            except Exception as e:
                reason = f"{type(e).__name__}: {e}"
            else:
                PAGE_FETCH_TIME.labels(report=self.report_name).observe(time.perf_counter() - started)
                PAGES_FETCHED.labels(report=self.report_name, status="success").inc()
                return result
            
            if attempt < self.retry_policy.max_attempts:
                delay = self.retry_policy.delay_for(attempt)
                logger.info(
                    "Retrying page",
                    report=self.report_name,
                    page=request.page_index,
                    attempt=attempt,
                    delay_seconds=delay,
                    reason=reason,
                )
                await self._sleep(delay)
        
        PAGE_FETCH_TIME.labels(report=self.report_name).observe(time.perf_counter() - started)
        PAGES_FETCHED.labels(report=self.report_name, status="failed").inc()
        logger.error(
            "Page fetch failed",
            report=self.report_name,
            page=request.page_index,
            offset=request.offset,
            attempts=attempts,
            reason=reason,
        )
        return PageFailure(page_index=request.page_index, reason=reason, attempts=attempts)
    
    def _parse(self, request: PageRequest, raw: Any) -> PageSuccess:
        """Validate raw rows against the row schema"""
        if raw is None:
            raw = []
        if isinstance(raw, (str, bytes, Mapping)) or not hasattr(raw, "__iter__"):
            raise TypeError(f"expected a sequence of rows, got {type(raw).__name__}")
        
        rows = []
        rejected = 0
        for raw_row in raw:
            try:
                rows.append(self.row_model.model_validate(raw_row))
            except ValidationError as e:
                rejected += 1
                logger.debug(
                    "Row rejected",
                    report=self.report_name,
                    page=request.page_index,
                    errors=e.error_count(),
                )
        
        if rejected:
            ROWS_REJECTED.labels(report=self.report_name).inc(rejected)
            logger.warning(
                "Rows rejected by schema",
                report=self.report_name,
                page=request.page_index,
                rejected=rejected,
            )
        
        logger.debug(
            "Page fetched",
            report=self.report_name,
            page=request.page_index,
            rows=len(rows),
        )
        return PageSuccess(page_index=request.page_index, rows=tuple(rows), rejected_rows=rejected)
