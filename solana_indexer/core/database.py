"""
Async engine and session maker shared by the indexer process and the CLI.

The repository receives the session maker explicitly; the globals here only
exist so the entry point and scripts/manage_db.py can bootstrap and tear down
one engine per process.
"""

from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import DatabaseConfig, Settings, settings
from .logging import get_logger

logger = get_logger(__name__)

async_engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session maker used for every store session (rows stay readable after commit)."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_database(config: Optional[Settings] = None) -> None:
    """Create the process-wide engine. Calling it twice replaces the engine."""
    global async_engine, async_session_maker

    config = config or settings
    if async_engine is not None:
        await close_database()

    url = DatabaseConfig.get_database_url(async_driver=True, config=config)
    logger.info("Initializing database engine", dialect=url.split(":", 1)[0])

    async_engine = create_async_engine(url, **DatabaseConfig.get_engine_config(config))
    async_session_maker = build_session_maker(async_engine)


async def close_database() -> None:
    """Dispose the engine; safe to call when it was never initialized."""
    global async_engine, async_session_maker

    engine, async_engine, async_session_maker = async_engine, None, None
    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Return the initialized session maker."""
    if async_session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return async_session_maker


def _require_engine() -> AsyncEngine:
    if async_engine is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return async_engine


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Session that commits on success and rolls back on error.

    Usage:
        async with get_async_session() as session:
            await session.execute(...)
    """
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


class DatabaseManager:
    """Schema and connectivity operations for the operator CLI and startup."""

    @staticmethod
    async def create_tables() -> None:
        from solana_indexer.models.base import Base

        async with _require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created", tables=sorted(Base.metadata.tables))

    @staticmethod
    async def drop_tables() -> None:
        from solana_indexer.models.base import Base

        logger.warning("Dropping all database tables", tables=sorted(Base.metadata.tables))
        async with _require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    @staticmethod
    async def health_check() -> bool:
        """True if a trivial query succeeds."""
        try:
            async with get_async_session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return False
