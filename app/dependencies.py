"""
OpsGuard - FastAPI Dependencies

Shared dependencies for database sessions, the Redis cache and the
service objects built on them. Tests override these with
`app.dependency_overrides`.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.services.cache_service import CacheService, get_cache_service
from app.services.payroll_service import PayrollService
from app.services.quote_service import QuoteService
from app.services.rate_table_service import RateTableService


def get_cache() -> CacheService:
    """Process-wide cache client."""
    return get_cache_service()


async def get_rate_table_service(
    db: AsyncSession = Depends(get_async_session),
    cache: CacheService = Depends(get_cache),
) -> RateTableService:
    return RateTableService(db, cache)


async def get_payroll_service(
    db: AsyncSession = Depends(get_async_session),
    cache: CacheService = Depends(get_cache),
    rate_tables: RateTableService = Depends(get_rate_table_service),
) -> PayrollService:
    return PayrollService(db, cache=cache, rate_tables=rate_tables)


async def get_quote_service(
    db: AsyncSession = Depends(get_async_session),
    rate_tables: RateTableService = Depends(get_rate_table_service),
) -> QuoteService:
    return QuoteService(db, rate_tables=rate_tables)
