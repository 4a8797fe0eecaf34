"""
Partial-Failure Collector

Accumulates page outcomes for one report. Failed pages are counted and
surfaced, never raised: a report is built from whatever pages succeeded.
"""

from dataclasses import dataclass, field
from typing import Dict, Generic, Iterator, List, Optional, Tuple, TypeVar

import structlog

from report_engine.ingestion.page_fetcher import PageFailure, PageResult, PageSuccess

logger = structlog.get_logger(__name__)

RowT = TypeVar("RowT")


@dataclass
class CollectedPages(Generic[RowT]):
    """All page outcomes of one report run"""
    page_rows: Dict[int, List[RowT]] = field(default_factory=dict)
    failures: List[PageFailure] = field(default_factory=list)
    total_pages: int = 0
    total_records: int = 0
    rejected_rows: int = 0
    
    @property
    def failed_pages(self) -> int:
        return len(self.failures)
    
    @property
    def succeeded_pages(self) -> int:
        return len(self.page_rows)
    
    @property
    def is_partial(self) -> bool:
        return self.failed_pages > 0
    
    @property
    def rows(self) -> List[RowT]:
        """Rows of all successful pages, in page order"""
        return [row for _, rows in self.pages() for row in rows]
    
    def pages(self) -> Iterator[Tuple[int, List[RowT]]]:
        """Successful pages as (page_index, rows), in page order"""
        for page_index in sorted(self.page_rows):
            yield page_index, self.page_rows[page_index]


class PartialFailureCollector(Generic[RowT]):
    """
    Collect PageResults into a CollectedPages.
    
    Adding a result for a page index that is already known replaces the
    earlier outcome for that page.
    
    Example:
        collector = PartialFailureCollector(total_pages=3, total_records=1200)
        for result in results:
            collector.add(result)
        collected = collector.result()
    """
    
    def __init__(self, total_pages: int = 0, total_records: int = 0, report_name: str = "adhoc"):
        self.total_pages = total_pages
        self.total_records = total_records
        self.report_name = report_name
        self._rows: Dict[int, List[RowT]] = {}
        self._rejected: Dict[int, int] = {}
        self._failures: Dict[int, PageFailure] = {}
    
    def add(self, result: PageResult) -> None:
        """Record the outcome of one page"""
        index = result.page_index
        if isinstance(result, PageSuccess):
            self._failures.pop(index, None)
            self._rows[index] = list(result.rows)
            self._rejected[index] = result.rejected_rows
        else:
            self._rows.pop(index, None)
            self._rejected.pop(index, None)
            self._failures[index] = result
    
    def add_all(self, results) -> None:
        for result in results:
            self.add(result)
    
    @property
    def failed_pages(self) -> int:
        return len(self._failures)
    
    def result(self) -> CollectedPages:
        """
        Snapshot the collected pages.
        
        Logs a warning when pages failed; the caller proceeds with the
        partial data.
        """
        seen = len(self._rows) + len(self._failures)
        collected = CollectedPages(
            page_rows={index: list(rows) for index, rows in self._rows.items()},
            failures=[self._failures[index] for index in sorted(self._failures)],
            total_pages=max(self.total_pages, seen),
            total_records=self.total_records,
            rejected_rows=sum(self._rejected.values()),
        )
        
        if collected.failed_pages:
            logger.warning(
                f"{collected.failed_pages}/{collected.total_pages} pages failed, continuing with partial data",
                report=self.report_name,
                failed_pages=[failure.page_index for failure in collected.failures],
            )
        else:
            logger.info(
                "All pages collected",
                report=self.report_name,
                pages=collected.total_pages,
                rows=sum(len(rows) for rows in collected.page_rows.values()),
            )
        
        return collected
