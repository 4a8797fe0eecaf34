"""
Database Models - Reporting Sources

Read models for the tables the reports page through:

- SalesLine: posted sales transactions (turnover, purchases, consumption)
- CogsEntry: monthly cost-of-goods-sold per item and vendor
- StockItem: current on-hand stock per item
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Date,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


class SalesLine(Base):
    """
    Sales Line Fact Table
    
    One row per posted invoice line.
    """
    __tablename__ = "fact_sales_lines"
    
    line_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_no: Mapped[str] = mapped_column(String(40), nullable=False)
    posting_date: Mapped[date] = mapped_column(Date, nullable=False)
    region: Mapped[Optional[str]] = mapped_column(String(100))
    customer_code: Mapped[str] = mapped_column(String(40), nullable=False)
    customer_name: Mapped[Optional[str]] = mapped_column(String(200))
    search_name: Mapped[Optional[str]] = mapped_column(String(200))
    salesperson_code: Mapped[Optional[str]] = mapped_column(String(40))
    item_code: Mapped[str] = mapped_column(String(40), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), default=0)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0)
    unit_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 4))
    
    __table_args__ = (
        Index("ix_sales_lines_posting_date", "posting_date"),
        Index("ix_sales_lines_region_customer", "region", "customer_code"),
        Index("ix_sales_lines_item_date", "item_code", "posting_date"),
    )


class CogsEntry(Base):
    """
    COGS History Table
    
    Unit cost per item, vendor and calendar month.
    """
    __tablename__ = "fact_cogs"
    
    cogs_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_code: Mapped[str] = mapped_column(String(40), nullable=False)
    vendor_code: Mapped[Optional[str]] = mapped_column(String(40))
    vendor_name: Mapped[Optional[str]] = mapped_column(String(200))
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    cogs_unit: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 4))
    
    __table_args__ = (
        Index("ix_cogs_item_period", "item_code", "year", "month"),
        Index("ix_cogs_vendor", "vendor_code"),
    )


class StockItem(Base):
    """
    Stock On Hand
    
    Current adjusted quantity and valuation per item.
    """
    __tablename__ = "dim_stock_items"
    
    item_code: Mapped[str] = mapped_column(String(40), primary_key=True)
    description: Mapped[Optional[str]] = mapped_column(String(300))
    vendor_code: Mapped[Optional[str]] = mapped_column(String(40))
    vendor_name: Mapped[Optional[str]] = mapped_column(String(200))
    posting_group: Mapped[Optional[str]] = mapped_column(String(40))
    category_description: Mapped[Optional[str]] = mapped_column(String(200))
    adjusted_quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), default=0)
    stock_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0)
