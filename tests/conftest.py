"""
Test Suite Configuration
"""
import asyncio
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from report_engine.config import EngineSettings
from report_engine.database.models import Base, CogsEntry, SalesLine, StockItem
from report_engine.reports import ReportResult, cache_key_for


class FakePagedQuery:
    """
    In-memory paged query source.
    
    Pages whose offset is in ``fail_offsets`` raise, ``count_error`` makes
    the count query raise, ``delay`` keeps each query in flight for a while.
    """
    
    def __init__(
        self,
        rows: Sequence[Dict[str, Any]],
        fail_offsets: Optional[Set[int]] = None,
        count_error: Optional[Exception] = None,
        count_value: Optional[Any] = None,
        delay: float = 0.0,
        failures_before_success: int = 0,
    ):
        self.rows = list(rows)
        self.fail_offsets = set(fail_offsets or ())
        self.count_error = count_error
        self.count_value = count_value
        self.delay = delay
        self.failures_before_success = failures_before_success
        self.count_calls = 0
        self.query_calls: List[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0
    
    async def count(self, filters: Mapping[str, Any]) -> int:
        self.count_calls += 1
        if self.count_error is not None:
            raise self.count_error
        if self.count_value is not None:
            return self.count_value
        return len(self.rows)
    
    async def query(self, filters: Mapping[str, Any], offset: int, limit: int) -> List[Dict[str, Any]]:
        self.query_calls.append((offset, limit))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.failures_before_success > 0:
                self.failures_before_success -= 1
                raise ConnectionError("connection reset by peer")
            if offset in self.fail_offsets:
                raise ConnectionError(f"upstream error at offset {offset}")
            return self.rows[offset:offset + limit]
        finally:
            self.in_flight -= 1


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays"""
    
    def __init__(self):
        self.delays: List[float] = []
    
    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeCache:
    """ReportCache stand-in backed by a dict"""
    
    def __init__(self):
        self.store: Dict[str, ReportResult] = {}
    
    async def get(self, report_name: str, filters: Mapping[str, Any]) -> Optional[ReportResult]:
        return self.store.get(cache_key_for(report_name, filters))
    
    async def set(self, report_name: str, filters: Mapping[str, Any], result: ReportResult) -> None:
        self.store[cache_key_for(report_name, filters)] = result


class FailingCache:
    """ReportCache stand-in whose Redis connection is down"""
    
    def __init__(self, fail_get: bool = True, fail_set: bool = True):
        self.fail_get = fail_get
        self.fail_set = fail_set
        self.set_calls = 0
    
    async def get(self, report_name: str, filters: Mapping[str, Any]) -> Optional[ReportResult]:
        if self.fail_get:
            raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")
        return None
    
    async def set(self, report_name: str, filters: Mapping[str, Any], result: ReportResult) -> None:
        self.set_calls += 1
        if self.fail_set:
            raise RedisConnectionError("Connection closed by server.")


@pytest.fixture
def engine_settings() -> EngineSettings:
    """Small pages so tests exercise windowing"""
    return EngineSettings(
        page_size=100,
        max_concurrency=3,
        window_delay_seconds=0.2,
        page_timeout_seconds=1.0,
        max_sequential_pages=50,
    )


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def region_rows() -> List[Dict[str, Any]]:
    """Two regions, three customers, two months each"""
    return [
        {"region": "North", "customer_code": "C001", "customer_name": "Acme", "year_month": "2024-01", "monthly_turnover": 1000.0},
        {"region": "North", "customer_code": "C001", "customer_name": "Acme", "year_month": "2024-02", "monthly_turnover": 1500.0},
        {"region": "North", "customer_code": "C002", "customer_name": "Globex", "year_month": "2024-01", "monthly_turnover": 200.0},
        {"region": "North", "customer_code": "C002", "customer_name": "Globex", "year_month": "2024-02", "monthly_turnover": 300.0},
        {"region": "South", "customer_code": "C003", "customer_name": "Initech", "year_month": "2024-01", "monthly_turnover": 700.0},
        {"region": "South", "customer_code": "C003", "customer_name": "Initech", "year_month": "2024-02", "monthly_turnover": 0.0},
    ]


@pytest_asyncio.fixture
async def sqlite_session_factory(tmp_path):
    """Session factory over a seeded SQLite database"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'reports.db'}", echo=False)
    
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    
    async with session_factory() as session:
        session.add_all([
            SalesLine(document_no="INV-1", posting_date=date(2024, 1, 5), region="North", customer_code="C001",
                      customer_name="Acme", salesperson_code="SP1", item_code="ITEM-A", quantity=10, amount=1000, unit_price=100),
            SalesLine(document_no="INV-2", posting_date=date(2024, 1, 20), region="North", customer_code="C001",
                      customer_name="Acme", salesperson_code="SP1", item_code="ITEM-A", quantity=5, amount=500, unit_price=100),
            SalesLine(document_no="INV-3", posting_date=date(2024, 2, 3), region="North", customer_code="C002",
                      customer_name="Globex", salesperson_code="SP2", item_code="ITEM-B", quantity=4, amount=400, unit_price=100),
            SalesLine(document_no="INV-4", posting_date=date(2024, 2, 10), region=None, customer_code="C003",
                      customer_name="Initech", salesperson_code="SP2", item_code="ITEM-A", quantity=30, amount=3000, unit_price=100),
            SalesLine(document_no="INV-5", posting_date=date(2023, 12, 31), region="North", customer_code="C001",
                      customer_name="Acme", salesperson_code="SP1", item_code="ITEM-A", quantity=1, amount=100, unit_price=100),
        ])
        session.add_all([
            CogsEntry(item_code="ITEM-A", vendor_code="V1", vendor_name="Vendor One", year=2024, month=1, cogs_unit=60),
            CogsEntry(item_code="ITEM-A", vendor_code="V1", vendor_name="Vendor One", year=2024, month=2, cogs_unit=66),
            CogsEntry(item_code="ITEM-B", vendor_code="V2", vendor_name="Vendor Two", year=2024, month=1, cogs_unit=50),
        ])
        session.add_all([
            StockItem(item_code="ITEM-A", description="Widget", vendor_code="V1", vendor_name="Vendor One",
                      posting_group="FG", adjusted_quantity=20, stock_value=1200),
            StockItem(item_code="ITEM-B", description="Gadget", vendor_code="V2", vendor_name="Vendor Two",
                      posting_group="FG", adjusted_quantity=100, stock_value=5000),
            StockItem(item_code="ITEM-C", description="Spare", vendor_code=None, vendor_name=None,
                      posting_group=None, adjusted_quantity=0, stock_value=0),
        ])
        await session.commit()
    
    yield session_factory
    
    await engine.dispose()
