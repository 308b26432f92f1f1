"""PostgreSQL engine and session factory (SQLAlchemy async + asyncpg).

The store and the audit subscriber open a short-lived session per operation
from ``async_session_factory``; nothing holds a session across an await on a
payment gateway or email provider.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from quotepay.config import DatabaseSettings, settings

logger = logging.getLogger(__name__)


def build_engine(db: DatabaseSettings, *, echo: bool = False) -> AsyncEngine:
    return create_async_engine(
        db.database_url,
        echo=echo,
        pool_size=db.pool_size,
        max_overflow=db.pool_max_overflow,
        pool_recycle=db.pool_recycle_seconds,
        pool_pre_ping=True,
    )


engine: AsyncEngine = build_engine(settings.db, echo=settings.log_level == "DEBUG")

async_session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(engine, expire_on_commit=False)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request, committed unless the handler raised."""
    async with async_session_factory() as session, session.begin():
        yield session


async def init_db() -> None:
    """Check the connection; in development also create missing tables.

    Production schemas are managed by Alembic only.
    """
    import quotepay.models  # noqa: F401  (populates Base.metadata)
    from quotepay.models.base import Base

    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        if settings.is_production:
            return
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Development schema ensured (%d tables)", len(Base.metadata.tables))


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncIterator[None]:
    """Open the database for the application's lifetime; dispose the pool on exit."""
    await init_db()
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Database engine disposed")
