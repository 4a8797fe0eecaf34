"""
Integration Tests - SQL Paged Queries
"""
from datetime import date

import pytest

from report_engine.analytics import StockThresholds
from report_engine.config import EngineSettings
from report_engine.database.models import CogsEntry, SalesLine
from report_engine.ingestion import SqlPagedQuery
from report_engine.reports import (
    build_cogs_history_report,
    build_customer_purchases_report,
    build_region_turnover_report,
    build_stock_status_report,
)
from report_engine.reports.cogs_history import cogs_history_filters, sql_item_discovery
from report_engine.reports.customer_purchases import load_item_lookups
from report_engine.reports.region_turnover import region_turnover_filters, region_turnover_statement

SETTINGS = EngineSettings(page_size=2, max_concurrency=2, window_delay_seconds=0.0)


class TestSqlPagedQuery:
    """Tests for SqlPagedQuery against SQLite"""
    
    @pytest.mark.asyncio
    async def test_count_and_pages(self, sqlite_session_factory):
        source = SqlPagedQuery(region_turnover_statement, sqlite_session_factory)
        filters = region_turnover_filters(date(2024, 1, 1), date(2024, 2, 29))
        
        total = await source.count(filters)
        first = await source.query(filters, offset=0, limit=2)
        second = await source.query(filters, offset=2, limit=2)
        
        assert total == 3
        assert len(first) == 2
        assert len(second) == 1
        keys = [(row["region"], row["customer_code"]) for row in first + second]
        assert len(set(keys)) == 3
    
    @pytest.mark.asyncio
    async def test_salesperson_filter(self, sqlite_session_factory):
        source = SqlPagedQuery(region_turnover_statement, sqlite_session_factory)
        
        total = await source.count(region_turnover_filters(date(2024, 1, 1), date(2024, 2, 29), "SP2"))
        
        assert total == 2


class TestReportsAgainstSqlite:
    """End to end report builds against SQLite"""
    
    @pytest.mark.asyncio
    async def test_region_turnover(self, sqlite_session_factory):
        result = await build_region_turnover_report(
            date(2024, 1, 1), date(2024, 2, 29), session_factory=sqlite_session_factory, settings=SETTINGS
        )
        
        assert [group.key for group in result.groups] == ["Unassigned", "North"]
        assert result.grand_total == pytest.approx(4900.0)
        assert result.total_records == 3
        assert result.total_pages == 2
        assert result.failed_pages == 0
        north = result.groups[1]
        assert [(point.year_month, point.amount) for point in north.monthly] == [("2024-01", 1500.0), ("2024-02", 400.0)]
    
    @pytest.mark.asyncio
    async def test_item_lookups(self, sqlite_session_factory):
        cogs_units, descriptions = await load_item_lookups(["ITEM-A", "ITEM-B"], sqlite_session_factory)
        
        assert cogs_units == {"ITEM-A": 66.0, "ITEM-B": 50.0}
        assert descriptions == {"ITEM-A": "Widget", "ITEM-B": "Gadget"}
    
    @pytest.mark.asyncio
    async def test_customer_purchases(self, sqlite_session_factory):
        result = await build_customer_purchases_report(
            ["ITEM-A"],
            date(2024, 1, 1),
            date(2024, 2, 29),
            session_factory=sqlite_session_factory,
            settings=SETTINGS,
        )
        
        item = result.groups[0]
        assert item.key == "ITEM-A"
        assert item.attributes["item_description"] == "Widget"
        assert item.total == pytest.approx(4500.0)
        assert item.cost == pytest.approx(45 * 66.0)
        assert item.metrics.margin_percent == pytest.approx(34.0)
        assert [customer.key for customer in item.children] == ["C003", "C001"]
    
    @pytest.mark.asyncio
    async def test_item_discovery(self, sqlite_session_factory):
        discover = sql_item_discovery(sqlite_session_factory)
        
        assert await discover(cogs_history_filters()) == ["ITEM-A", "ITEM-B"]
        assert await discover(cogs_history_filters(vendor_code="V2")) == ["ITEM-B"]
    
    @pytest.mark.asyncio
    async def test_cogs_history(self, sqlite_session_factory):
        result = await build_cogs_history_report(
            item_code="ITEM-A",
            from_date=date(2024, 1, 1),
            to_date=date(2024, 1, 31),
            session_factory=sqlite_session_factory,
            settings=SETTINGS,
        )
        
        assert [group.key for group in result.groups] == ["ITEM-A"]
        assert result.groups[0].attributes["description"] == "Widget"
        assert result.grand_total == pytest.approx(60.0)
        assert result.total_records == 2
    
    @pytest.mark.asyncio
    async def test_stock_status(self, sqlite_session_factory):
        result = await build_stock_status_report(
            as_of=date(2024, 2, 10),
            thresholds=StockThresholds(critical_days=7, low_days=30, max_days=999, days_in_period=30),
            session_factory=sqlite_session_factory,
            settings=SETTINGS,
        )
        
        assert [group.key for group in result.groups] == ["FG", "Uncategorized"]
        items = {
            item.key: item
            for group in result.groups
            for vendor in group.children
            for item in vendor.children
        }
        assert items["ITEM-A"].attributes["last_period_consumption"] == pytest.approx(35.0)
        assert items["ITEM-A"].metrics.stock_status == "low"
        assert items["ITEM-B"].metrics.stock_status == "normal"
        assert items["ITEM-C"].metrics.stock_status == "unknown"
        assert result.metrics.status_counts == {"critical": 0, "low": 1, "normal": 1, "unknown": 1}


class TestBlankKeysGroupedInStore:
    """Tests that blank grouping keys are folded before paging"""
    
    @pytest.mark.asyncio
    async def test_null_and_blank_region_turnover_is_summed(self, sqlite_session_factory):
        async with sqlite_session_factory() as session:
            session.add_all([
                SalesLine(document_no="INV-6", posting_date=date(2024, 3, 4), region=None, customer_code="C9",
                          customer_name="Umbrella", item_code="ITEM-B", quantity=1, amount=100),
                SalesLine(document_no="INV-7", posting_date=date(2024, 3, 18), region="", customer_code="C9",
                          customer_name="Umbrella", item_code="ITEM-B", quantity=2, amount=250),
            ])
            await session.commit()
        
        result = await build_region_turnover_report(
            date(2024, 3, 1), date(2024, 3, 31), session_factory=sqlite_session_factory, settings=SETTINGS
        )
        
        assert result.total_records == 1
        assert [group.key for group in result.groups] == ["Unassigned"]
        customer = result.groups[0].children[0]
        assert customer.key == "C9"
        assert [(point.year_month, point.amount) for point in customer.monthly] == [("2024-03", 350.0)]
        assert result.grand_total == pytest.approx(350.0)
    
    @pytest.mark.asyncio
    async def test_blank_vendors_and_duplicate_months(self, sqlite_session_factory):
        async with sqlite_session_factory() as session:
            session.add_all([
                CogsEntry(item_code="ITEM-D", vendor_code=None, year=2024, month=3, cogs_unit=10),
                CogsEntry(item_code="ITEM-D", vendor_code="", year=2024, month=3, cogs_unit=20),
                CogsEntry(item_code="ITEM-D", vendor_code="V1", vendor_name="Vendor One", year=2024, month=3, cogs_unit=30),
                CogsEntry(item_code="ITEM-D", vendor_code="V1", vendor_name="Vendor One", year=2024, month=3, cogs_unit=50),
            ])
            await session.commit()
        
        result = await build_cogs_history_report(
            item_code="ITEM-D",
            from_date=date(2024, 3, 1),
            to_date=date(2024, 3, 31),
            descriptions={},
            session_factory=sqlite_session_factory,
            settings=SETTINGS,
        )
        
        assert result.total_records == 2
        vendors = {vendor.key: vendor for vendor in result.groups[0].children}
        assert list(vendors) == ["V1", "UNKNOWN"]
        assert vendors["V1"].total == pytest.approx(40.0)
        assert vendors["V1"].attributes["vendor_name"] == "Vendor One"
        assert vendors["UNKNOWN"].total == pytest.approx(15.0)
