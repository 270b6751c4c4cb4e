"""
Database engine and session factories (SQLAlchemy async).

The monitor engine, job store and worker pool never share a session; each unit
of work opens its own from the module-level ``async_session_maker`` (or a maker
built with ``build_session_maker`` for tests and scripts).
"""

from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def build_engine(url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    """Create an async engine; NullPool keeps connections per session."""
    return create_async_engine(
        url or settings.DATABASE_URL,
        echo=echo,
        poolclass=NullPool,
        future=True,
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    """Session factory used by every component that touches the database."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_all_tables(bind: AsyncEngine):
    """Create every table registered on the declarative Base."""
    # Import models so they register on Base.metadata
    import models  # noqa: F401
    from models.base import Base

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


engine = build_engine()
async_session_maker = build_session_maker(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session"""
    async with async_session_maker() as session:
        yield session
