"""
Page Ingestion Module
"""
from .collector import CollectedPages, PartialFailureCollector
from .page_fetcher import PageFailure, PageFetcher, PageRequest, PageResult, PageSuccess
from .retry import NO_RETRY, RetryPolicy
from .scheduler import BatchScheduler, DiscoveryError, ReportEngineError, plan_pages, split_windows
from .sources import PagedQuery, SqlPagedQuery

__all__ = [
    "BatchScheduler",
    "CollectedPages",
    "DiscoveryError",
    "NO_RETRY",
    "PagedQuery",
    "PageFailure",
    "PageFetcher",
    "PageRequest",
    "PageResult",
    "PageSuccess",
    "PartialFailureCollector",
    "ReportEngineError",
    "RetryPolicy",
    "SqlPagedQuery",
    "plan_pages",
    "split_windows",
]
