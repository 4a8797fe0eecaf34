"""
Unit Tests - Command Line Interface
"""
from datetime import date

import pytest

from report_engine import cli
from report_engine.ingestion import DiscoveryError
from report_engine.reports import ReportResult


class TestParser:
    """Tests for argument parsing"""
    
    def test_region_turnover(self):
        args = cli.build_parser().parse_args(
            ["region-turnover", "--from", "2024-01-01", "--to", "2024-03-31", "--salesperson", "SP1"]
        )
        
        assert args.report == "region-turnover"
        assert args.from_date == date(2024, 1, 1)
        assert args.to_date == date(2024, 3, 31)
        assert args.salesperson == "SP1"
    
    def test_stock_status_flags(self):
        args = cli.build_parser().parse_args(["--indent", "0", "stock-status", "--hide-zero", "--critical-only"])
        
        assert args.hide_zero
        assert args.critical_only
        assert args.as_of is None
        assert args.indent == 0
    
    def test_invalid_date(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["region-turnover", "--from", "01/02/2024", "--to", "2024-03-31"])
    
    def test_report_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestMain:
    """Tests for exit codes"""
    
    @pytest.fixture(autouse=True)
    def no_database(self, monkeypatch):
        async def noop(*args, **kwargs):
            return None
        
        monkeypatch.setattr(cli, "init_database", noop)
        monkeypatch.setattr(cli, "close_database", noop)
        monkeypatch.setattr(cli, "configure_logging", lambda level=None: None)
    
    def _run_with(self, monkeypatch, outcome):
        async def fake_run_report(args):
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        
        monkeypatch.setattr(cli, "run_report", fake_run_report)
        return cli.main(["cogs-history", "--item", "ITEM-A"])
    
    def test_complete_report(self, monkeypatch, capsys):
        code = self._run_with(monkeypatch, ReportResult(report="cogs_history", total_pages=1))
        
        assert code == 0
        assert '"failedPages": 0' in capsys.readouterr().out
    
    def test_partial_report(self, monkeypatch):
        code = self._run_with(monkeypatch, ReportResult(report="cogs_history", total_pages=4, failed_pages=1))
        
        assert code == 2
    
    def test_discovery_failure(self, monkeypatch):
        code = self._run_with(monkeypatch, DiscoveryError("cogs_history", "lookup failed"))
        
        assert code == 1
