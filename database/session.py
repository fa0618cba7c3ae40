"""
Async SQLAlchemy engine factory and schema bootstrap.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from config.settings import Settings
from database.executor import QueryExecutor
from database.models import Base

logger = logging.getLogger(__name__)


def create_engine(settings: Settings) -> AsyncEngine:
    """Build the pooled engine described by ``settings``."""
    return create_async_engine(
        settings.database_url,
        echo=False,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=True,
        connect_args={"timeout": settings.db_connect_timeout},
    )


def create_executor(settings: Settings) -> QueryExecutor:
    return QueryExecutor(create_engine(settings), query_timeout=settings.db_query_timeout)


async def init_schema(engine: AsyncEngine) -> None:
    """Create any missing tables from ``database.models``."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables checked/created.")
