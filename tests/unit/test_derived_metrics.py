"""
Unit Tests - Derived Metrics
"""
from datetime import date

import pytest

from report_engine.aggregation import AggregateNode, AggregationMerger
from report_engine.analytics import (
    StockStatus,
    StockThresholds,
    apply_derived_metrics,
    apply_stock_metrics,
    assess_stock,
    days_of_stock,
    margin_percent,
    month_over_month,
    period_variance,
    running_total,
    variance_percent,
)
from report_engine.reports.customer_purchases import PurchaseRow, customer_purchases_definition

THRESHOLDS = StockThresholds(critical_days=7, low_days=30, max_days=999, days_in_period=30)


def purchase(item_code, amount, quantity, customer="C1", day=5):
    return PurchaseRow(
        item_code=item_code,
        customer_code=customer,
        amount=amount,
        quantity=quantity,
        posting_date=date(2024, 1, day),
    )


class TestVariance:
    """Tests for variance percent"""
    
    def test_variance(self):
        assert variance_percent(100, 150) == pytest.approx(50.0)
        assert variance_percent(200, 50) == pytest.approx(-75.0)
    
    def test_zero_baseline_is_none(self):
        """Test a zero baseline yields None instead of raising"""
        assert variance_percent(0, 150) is None
        assert variance_percent(0, 0) is None
    
    def test_missing_values(self):
        assert variance_percent(None, 10) is None
        assert variance_percent(10, None) is None
    
    def test_period_variance_needs_two_points(self):
        assert period_variance([100]) is None
        assert period_variance([100, 80, 120]) == pytest.approx(20.0)
    
    def test_month_over_month(self):
        assert month_over_month([100, 0, 50]) == [None, pytest.approx(-100.0), None]
        assert month_over_month([]) == []


class TestRunningTotal:
    
    def test_running_total(self):
        assert running_total([10, 20, 5]) == [10, 30, 35]
    
    def test_empty(self):
        assert running_total([]) == []


class TestMargin:
    """Tests for margin percent"""
    
    def test_margin(self):
        assert margin_percent(200, 150) == pytest.approx(25.0)
    
    def test_no_sales_is_none(self):
        assert margin_percent(0, 0) is None
        assert margin_percent(0, 50) is None
    
    def test_unknown_cost_is_none(self):
        assert margin_percent(100, None) is None
    
    def test_weighted_from_totals(self):
        """Test group margin comes from summed sales and cost"""
        merger = AggregationMerger(customer_purchases_definition({"BIG": 90.0, "SMALL": 1.0}).plan)
        merger.merge_rows([
            purchase("BIG", amount=1000.0, quantity=10),
            purchase("SMALL", amount=10.0, quantity=1),
        ])
        root = merger.finalize()
        
        apply_derived_metrics(root)
        
        assert root.children["BIG"].metrics.margin_percent == pytest.approx(10.0)
        assert root.children["SMALL"].metrics.margin_percent == pytest.approx(90.0)
        # (1010 - 901) / 1010, not the 50% average of the two
        assert root.metrics.margin_percent == pytest.approx(10.792079, rel=1e-5)
    
    def test_uncosted_sales_do_not_inflate_margin(self):
        """Test sales without a known cost stay out of group margins"""
        merger = AggregationMerger(customer_purchases_definition({"ITEM-A": 60.0}).plan)
        merger.merge_rows([
            purchase("ITEM-A", amount=1000.0, quantity=10),
            purchase("ITEM-B", amount=1000.0, quantity=10),
        ])
        root = merger.finalize()
        
        apply_derived_metrics(root)
        
        assert root.children["ITEM-A"].metrics.margin_percent == pytest.approx(40.0)
        assert root.children["ITEM-B"].metrics.margin_percent is None
        assert root.metrics.margin_percent == pytest.approx(40.0)
        assert root.total == pytest.approx(2000.0)
        assert root.costed_amount == pytest.approx(1000.0)
    
    def test_cost_of_several_lines_is_summed(self):
        merger = AggregationMerger(customer_purchases_definition({"ITEM-A": 60.0}).plan)
        merger.merge_rows([
            purchase("ITEM-A", amount=1000.0, quantity=10),
            purchase("ITEM-A", amount=500.0, quantity=5, day=20),
        ])
        root = merger.finalize()
        
        apply_derived_metrics(root)
        
        assert root.children["ITEM-A"].total_cost == pytest.approx(900.0)
        assert root.metrics.margin_percent == pytest.approx(40.0)


class TestStockAssessment:
    """Tests for days of stock and stock status"""
    
    @pytest.mark.parametrize(
        "quantity,consumption,expected_days,expected_status",
        [
            (10, 60, 5.0, StockStatus.CRITICAL),
            (14, 60, 7.0, StockStatus.LOW),
            (40, 60, 20.0, StockStatus.LOW),
            (100, 60, 50.0, StockStatus.NORMAL),
            (0, 30, 0.0, StockStatus.CRITICAL),
            (-5, 30, 0.0, StockStatus.CRITICAL),
        ],
    )
    def test_thresholds(self, quantity, consumption, expected_days, expected_status):
        assessment = assess_stock(quantity, consumption, THRESHOLDS)
        
        assert assessment.days_of_stock == pytest.approx(expected_days)
        assert assessment.status == expected_status
    
    def test_no_consumption_with_stock_is_capped(self):
        """Test stock that is never consumed reports the cap, not infinity"""
        assessment = assess_stock(1000, 0, THRESHOLDS)
        
        assert assessment.days_of_stock == 999
        assert assessment.status == StockStatus.NORMAL
    
    def test_slow_consumption_is_capped(self):
        assert days_of_stock(1_000_000, 1, THRESHOLDS) == 999
    
    def test_no_consumption_no_stock_is_unknown(self):
        assessment = assess_stock(0, 0, THRESHOLDS)
        
        assert assessment.days_of_stock is None
        assert assessment.status == StockStatus.UNKNOWN
    
    def test_invalid_thresholds(self):
        with pytest.raises(ValueError):
            StockThresholds(critical_days=30, low_days=7)
        with pytest.raises(ValueError):
            StockThresholds(days_in_period=0)


class TestApplyMetrics:
    """Tests for attaching metrics to a tree"""
    
    def test_series_metrics(self):
        root = AggregateNode(key="root")
        customer = root.child("C001")
        customer.bucket("2024-01").amount = 100
        customer.bucket("2024-02").amount = 150
        customer.bucket("2024-03").amount = 50
        root.recompute_tree()
        
        apply_derived_metrics(root)
        
        assert customer.metrics.running_totals == [100, 250, 300]
        assert customer.metrics.variance_percent == pytest.approx(-50.0)
        assert root.metrics.running_totals == [100, 250, 300]
        assert customer.metrics.margin_percent is None
    
    def test_stock_statuses_counted_per_group(self):
        root = AggregateNode(key="root")
        vendor = root.child("FG").child("V1")
        vendor.child("A", {"adjusted_quantity": 10, "last_period_consumption": 60})
        vendor.child("B", {"adjusted_quantity": 100, "last_period_consumption": 60})
        root.child("Other").child("UNKNOWN").child("C", {"adjusted_quantity": 0, "last_period_consumption": 0})
        
        apply_stock_metrics(root, THRESHOLDS)
        
        assert vendor.children["A"].metrics.stock_status == StockStatus.CRITICAL
        assert vendor.children["B"].metrics.days_of_stock == pytest.approx(50.0)
        assert vendor.metrics.status_counts == {"critical": 1, "low": 0, "normal": 1, "unknown": 0}
        assert root.metrics.status_counts == {"critical": 1, "low": 0, "normal": 1, "unknown": 1}
        assert root.children["Other"].metrics.status_counts["unknown"] == 1
    
    def test_empty_tree(self):
        root = AggregateNode(key="root")
        
        apply_stock_metrics(root, THRESHOLDS)
        
        assert root.metrics.status_counts == {"critical": 0, "low": 0, "normal": 0, "unknown": 0}
        assert root.metrics.stock_status is None
