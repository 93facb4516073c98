"""Async database engine and session management.

Provides:
    - create_engine_from_settings: The SQLAlchemy async engine for a Settings object.
    - create_session_factory: A sessionmaker bound to the engine.
    - session_scope: One transaction, committed on success or rolled back on error.
    - create_tables: Development/test helper; there are no migrations.

The composition root (bootstrap.SettlementCore) owns the engine and disposes it.

Usage:
    engine = create_engine_from_settings(settings)
    factory = create_session_factory(engine)
    async with session_scope(factory) as session:
        ...
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from escrow_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from escrow_settlement.config import Settings

logger = get_logger(__name__)


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Create an async engine; SQLite gets no pool sizing arguments."""
    if settings.is_sqlite:
        engine = create_async_engine(settings.database_url, echo=settings.db_echo_sql)
    else:
        engine = create_async_engine(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_pre_ping=True,
            echo=settings.db_echo_sql,
        )
    logger.info(
        "database.engine_created",
        sqlite=settings.is_sqlite,
        pool_size=None if settings.is_sqlite else settings.db_pool_size,
    )
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Yield a session for one unit of work.

    The session is automatically committed on success or rolled back on error.
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables(engine: AsyncEngine) -> None:
    """Create tables if they don't exist (development and tests only)."""
    from escrow_settlement.infrastructure.database.orm_models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database.tables_created")
