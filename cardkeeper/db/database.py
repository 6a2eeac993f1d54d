"""
Engine and sessions for the inventory database.

Requests get a session per call through get_session. The bulk re-sort runs
after its request has returned, so it takes the session factory instead and
opens a short session per batch.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cardkeeper.config import settings
from cardkeeper.models.db import Base

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: committed when the handler returns, rolled back on a DB error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that outlives the request."""
    return async_session_factory


async def init_db() -> None:
    """Create missing tables for storage locations, rules, catalog, inventory and jobs."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
