"""Async SQLAlchemy engine and session setup."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from demand_sweep.config import settings

logger = logging.getLogger(__name__)


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.database_echo)
    return create_async_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.database_echo,
        pool_pre_ping=True,
        pool_recycle=300,
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    session_maker: async_sessionmaker[AsyncSession],
    *,
    commit_on_exit: bool = True,
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits on success and rolls back on error."""
    async with session_maker() as session:
        try:
            yield session
            if commit_on_exit:
                await session.commit()
        except Exception as e:
            logger.warning(f"Database session error: {repr(e)}, rolling back")
            try:
                await session.rollback()
            except Exception:
                logger.warning("Rollback also failed (connection likely closed)")
            raise


async def init_db(engine: AsyncEngine) -> None:
    """Create corpus tables if needed."""
    logger.info("Initializing database tables")
    from demand_sweep.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
