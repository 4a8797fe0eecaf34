"""
Report Aggregation Engine
Configuration Module
"""
from .settings import EngineSettings, Settings, StockSettings, get_settings

__all__ = ["EngineSettings", "Settings", "StockSettings", "get_settings"]
