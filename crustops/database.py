"""
Database engine and sessions.

PostgreSQL runs through psycopg's async driver; local runs and the test
suite use aiosqlite.
"""

import logging
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from crustops.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


def _pool_kwargs() -> dict:
    if settings.is_sqlite:
        # In-memory sqlite lives as long as its connection, so share exactly one
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {"pool_size": 5, "max_overflow": 10, "pool_pre_ping": True}


engine = create_async_engine(settings.database_url, echo=settings.database_echo, **_pool_kwargs())

async_session_maker = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    # Routes read attributes after commit
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request."""
    async with async_session_maker() as session:
        yield session


async def init_db() -> None:
    """Create missing tables. Safe to call on every start."""
    import crustops.models  # noqa: F401  (registers tables on Base.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Schema ready ({engine.url.get_backend_name()})")


async def drop_db() -> None:
    import crustops.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
