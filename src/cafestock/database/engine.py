"""Async engine and session factory for the ledger database."""

import logging
from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..config import settings
from .models import Base

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict[str, Any]:
    """Pool settings for ``url``; SQLite's single-connection pools take no sizing."""
    options: dict[str, Any] = {"echo": settings.debug, "pool_pre_ping": True}
    if url.startswith("postgresql"):
        # Managed Postgres drops idle connections, recycle before it does
        options.update(pool_size=5, max_overflow=10, pool_recycle=3600)
    return options


engine: AsyncEngine = create_async_engine(
    settings.database_url,
    **_engine_options(settings.database_url),
)

# Ledger operations read objects back after commit, so nothing expires on commit
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_db() -> None:
    """Create any missing ledger tables.

    Used on API startup for local runs; deployed databases are migrated with Alembic.
    """
    logger.info("Creating ledger tables if missing...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Ledger schema ready ({len(Base.metadata.tables)} tables)")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session, rolling back whatever the caller left uncommitted on error."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:  # Intentionally broad: any failure leaves the session rolled back
            await session.rollback()
            raise


async def close_db() -> None:
    """Dispose of the engine's connection pool on shutdown."""
    logger.info("Closing database connections...")
    await engine.dispose()
    logger.info("Database connections closed")
