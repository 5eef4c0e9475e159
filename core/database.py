"""
Engine and session factories for the source and state databases
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def create_source_engine(
    url: str = None,
    pool_size: int = None,
    pool_timeout: float = None,
) -> AsyncEngine:
    """
    Create the bounded connection pool used for extraction queries.

    max_overflow is zero so pool_size is a hard ceiling; a checkout that
    waits longer than pool_timeout raises sqlalchemy.exc.TimeoutError.
    """
    url = url or settings.SOURCE_DATABASE_URL
    pool_size = pool_size or settings.SOURCE_POOL_SIZE
    pool_timeout = pool_timeout if pool_timeout is not None else settings.SOURCE_POOL_TIMEOUT

    logger.info(f"Creating source engine (pool_size={pool_size}, pool_timeout={pool_timeout}s)")
    return create_async_engine(
        url,
        echo=False,
        pool_size=pool_size,
        max_overflow=0,
        pool_timeout=pool_timeout,
        pool_pre_ping=True,
    )


def create_state_engine(url: str = None) -> AsyncEngine:
    """Create engine for the watermark / run-history database"""
    return create_async_engine(
        url or settings.STATE_DATABASE_URL,
        echo=False,
        future=True
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    """Create session factory bound to the state engine"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False
    )
