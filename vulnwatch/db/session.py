"""Database session factory for async SQLAlchemy.

The engine is optional: with no ``VULNWATCH_DATABASE_URL`` configured,
``async_session`` is None and the application runs without a cache.
"""

from loguru import logger
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from vulnwatch.config import settings
from vulnwatch.db.models import Base


def _redact(url: str) -> str:
    return url[:50] + "..." if len(url) > 50 else url


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine | None:
    """Create an async engine, or None when no database URL is set."""
    if not database_url:
        return None
    logger.info("Database URL configured: {}", _redact(database_url))
    return create_async_engine(database_url, echo=echo)


def build_session_factory(
    engine: AsyncEngine | None,
) -> async_sessionmaker[AsyncSession] | None:
    if engine is None:
        return None
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create any missing tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


engine = build_engine(settings.database_url, echo=settings.debug)
async_session = build_session_factory(engine)
