"""
Async SQLAlchemy engine and sessions.

The commission pipeline opens short sessions around its read and write
phases and never holds one across a payment processor call.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from src.config import settings

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    options = {"echo": settings.log_level.upper() == "DEBUG"}
    if "+asyncpg" in url:
        # Transaction poolers (Supabase, PgBouncer) reject prepared statement caching,
        # and pool connections themselves
        options["poolclass"] = NullPool
        options["connect_args"] = {"statement_cache_size": 0}
    return options


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed on success."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Session scope outside FastAPI (pipeline phases, scripts).

    Usage:
        async with get_db_context() as db:
            record = await get_commission(db, transaction_id)
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            logger.debug("Session rolled back")
            raise
