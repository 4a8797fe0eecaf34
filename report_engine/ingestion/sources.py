"""
Paged Query Sources

The engine only depends on a paged query capability:

    count(filters) -> int
    query(filters, offset, limit) -> rows

``SqlPagedQuery`` provides it on top of an async SQLAlchemy session, with
each report supplying a statement builder for its filters.
"""

from typing import (
    Any,
    AsyncContextManager,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

import structlog
from sqlalchemy import ColumnElement, Select, func, literal_column, select
from sqlalchemy.ext.asyncio import AsyncSession

from report_engine.database.connection import get_db

logger = structlog.get_logger(__name__)

Filters = Mapping[str, Any]
RawRow = Mapping[str, Any]
StatementBuilder = Callable[[Filters], Select]
SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


def group_key(column: Any, default: str) -> ColumnElement:
    """
    Trimmed ``column`` with NULL and blank values replaced by ``default``.
    
    Use the same expression in SELECT and GROUP BY so rows the row models
    would fold into one key are already summed by the store. Constants are
    rendered inline, bound parameters would make the GROUP BY expression
    differ from the selected one on PostgreSQL.
    """
    quoted = default.replace("'", "''")
    return func.coalesce(
        func.nullif(func.trim(column), literal_column("''")),
        literal_column(f"'{quoted}'"),
    )


@runtime_checkable
class PagedQuery(Protocol):
    """Remote query capability consumed by the scheduler and fetcher"""
    
    async def count(self, filters: Filters) -> int:
        ...
    
    async def query(self, filters: Filters, offset: int, limit: int) -> Sequence[RawRow]:
        ...


class SqlPagedQuery:
    """
    Paged query over a SQLAlchemy select statement.
    
    The statement builder must return a statement with a deterministic
    ORDER BY, otherwise pages are not guaranteed to be disjoint.
    
    Example:
        source = SqlPagedQuery(region_turnover_statement)
        total = await source.count(filters)
        rows = await source.query(filters, offset=0, limit=500)
    """
    
    def __init__(
        self,
        statement_builder: StatementBuilder,
        session_factory: Optional[SessionFactory] = None,
    ):
        self.statement_builder = statement_builder
        self.session_factory = session_factory or get_db
    
    async def count(self, filters: Filters) -> int:
        stmt = self.statement_builder(filters).order_by(None)
        count_stmt = select(func.count()).select_from(stmt.subquery())
        
        async with self.session_factory() as session:
            result = await session.execute(count_stmt)
            total = result.scalar_one()
        
        logger.debug("Count query completed", total=total)
        return int(total)
    
    async def query(self, filters: Filters, offset: int, limit: int) -> List[Dict[str, Any]]:
        stmt = self.statement_builder(filters).offset(offset).limit(limit)
        
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            rows = [dict(row) for row in result.mappings().all()]
        
        logger.debug("Page query completed", offset=offset, limit=limit, rows=len(rows))
        return rows
