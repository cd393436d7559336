"""
Subscription store database: SQLAlchemy 2.0 async engine and sessions.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from urllib.parse import urlparse

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.settings import settings

logger = logging.getLogger(__name__)

CONNECT_ATTEMPTS = 10
CONNECT_RETRY_DELAY = 5  # seconds


class Base(DeclarativeBase):
    pass


def _pool_options(url: str) -> dict:
    # SQLite (tests, local runs) has no connection pool to size
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_pre_ping": True,
    }


def _masked(url: str) -> str:
    parsed = urlparse(url)
    if not parsed.password:
        return url
    return url.replace(f":{parsed.password}@", ":***@", 1)


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    **_pool_options(settings.database_url),
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; rolled back if the request fails."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create the push_subscriptions table, waiting for the database to accept connections."""
    from app.models import push_subscription  # noqa: F401

    logger.info("Connecting to subscription store at %s", _masked(settings.database_url))
    for attempt in range(1, CONNECT_ATTEMPTS + 1):
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except Exception as e:
            if attempt == CONNECT_ATTEMPTS:
                logger.error("Subscription store unreachable after %d attempts", attempt)
                raise
            logger.warning(
                "Subscription store connection attempt %d/%d failed: %s",
                attempt, CONNECT_ATTEMPTS, e,
            )
            await asyncio.sleep(CONNECT_RETRY_DELAY)
        else:
            logger.info("Subscription store ready")
            return


async def close_db() -> None:
    await engine.dispose()
