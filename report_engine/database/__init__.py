"""
Database Module
"""
from .connection import init_database, close_database, get_db
from .models import Base, SalesLine, CogsEntry, StockItem

__all__ = [
    "init_database",
    "close_database",
    "get_db",
    "Base",
    "SalesLine",
    "CogsEntry",
    "StockItem",
]
