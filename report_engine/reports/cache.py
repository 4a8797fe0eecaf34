"""
Redis Report Cache

Short-lived read-through cache for assembled reports. Entries are keyed by
report name and a hash of the normalized filters, and hold the report JSON.
"""

import hashlib
import json
from typing import Any, Mapping, Optional

import structlog
from pydantic import ValidationError
from redis.asyncio import Redis, ConnectionPool

from report_engine.config import get_settings
from report_engine.reports.assembler import ReportResult

logger = structlog.get_logger(__name__)

# Global Redis connection
_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[Redis] = None


async def init_redis() -> Redis:
    """Initialize Redis connection pool"""
    global _redis_pool, _redis_client
    
    if _redis_client is not None:
        return _redis_client
    
    settings = get_settings()
    _redis_pool = ConnectionPool.from_url(
        settings.redis.get_url(),
        max_connections=settings.redis.max_connections,
        socket_timeout=settings.redis.socket_timeout,
        decode_responses=settings.redis.decode_responses,
    )
    
    _redis_client = Redis(connection_pool=_redis_pool)
    
    try:
        await _redis_client.ping()
        logger.info("Redis connection established")
    except Exception as e:
        logger.error("Redis connection failed", error=str(e))
        raise
    
    return _redis_client


async def close_redis() -> None:
    """Close Redis connection pool"""
    global _redis_pool, _redis_client
    
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
    
    if _redis_pool:
        await _redis_pool.disconnect()
        _redis_pool = None
    
    logger.info("Redis connection closed")


def set_redis(client: Optional[Redis]) -> None:
    """Install an already connected client (or clear it)"""
    global _redis_client
    _redis_client = client


def get_redis() -> Redis:
    """Get Redis client instance"""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def cache_key_for(report_name: str, filters: Mapping[str, Any]) -> str:
    """Stable cache key for a report and its filters"""
    encoded = json.dumps(dict(filters), sort_keys=True, default=str)
    return f"{report_name}:{hashlib.md5(encoded.encode('utf-8')).hexdigest()}"


class ReportCache:
    """
    Report results in one Redis namespace.
    
    Redis errors propagate; the engine decides how to degrade.
    
    Example:
        cache = ReportCache("reports", ttl=300)
        await cache.set("region_turnover", filters, result)
        result = await cache.get("region_turnover", filters)
    """
    
    def __init__(self, namespace: str = "reports", ttl: int = 300):
        self.namespace = namespace
        self.ttl = ttl
    
    def key_for(self, report_name: str, filters: Mapping[str, Any]) -> str:
        return f"{self.namespace}:{cache_key_for(report_name, filters)}"
    
    async def get(self, report_name: str, filters: Mapping[str, Any]) -> Optional[ReportResult]:
        """Cached result, None on a miss or an unreadable entry"""
        key = self.key_for(report_name, filters)
        value = await get_redis().get(key)
        if value is None:
            return None
        
        try:
            return ReportResult.model_validate_json(value)
        except ValidationError as e:
            logger.warning("Discarding unreadable cache entry", key=key, errors=e.error_count())
            return None
    
    async def set(self, report_name: str, filters: Mapping[str, Any], result: ReportResult) -> None:
        key = self.key_for(report_name, filters)
        await get_redis().setex(key, self.ttl, result.model_dump_json(by_alias=True))


def create_report_cache() -> ReportCache:
    """Report cache configured from settings"""
    return ReportCache("reports", ttl=get_settings().engine.report_cache_ttl_seconds)
