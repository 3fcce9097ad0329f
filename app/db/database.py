"""
Database Module

Async SQLAlchemy engine, session factory and the declarative Base.

The API uses get_db() as a FastAPI dependency; background workers
open their own sessions from AsyncSessionLocal.
"""

import logging
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings

logger = logging.getLogger(__name__)


def _engine_options() -> dict:
    """Pool options only apply to server databases, not SQLite."""
    options = {"echo": settings.SQLALCHEMY_ECHO, "pool_pre_ping": True}
    if not settings.DATABASE_URL.startswith("sqlite"):
        if settings.DB_POOL_MIN_SIZE:
            options["pool_size"] = settings.DB_POOL_MIN_SIZE
        if settings.DB_POOL_MAX_SIZE:
            options["max_overflow"] = max(
                settings.DB_POOL_MAX_SIZE - (settings.DB_POOL_MIN_SIZE or 5), 0
            )
    return options


engine = create_async_engine(settings.DATABASE_URL, **_engine_options())

# expire_on_commit=False: attributes stay loaded after commit, async sessions
# cannot lazy-load them back.
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields a database session.

    Usage:
        @router.get("/")
        async def endpoint(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        yield session


async def check_db_connection() -> bool:
    """Run a trivial query to verify the database is reachable."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
