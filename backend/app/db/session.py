from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import settings


def _engine_options(url: str) -> dict[str, Any]:
    # sqlite (local runs) has no server-side connections to ping or recycle
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": True,  # detects dead connections before using them
        "pool_recycle": 300,
    }


# CLEAN URL: asyncpg rejects sslmode/channel_binding query params
engine: AsyncEngine = create_async_engine(
    settings.DATABASE_URL_ASYNC_CLEAN,
    echo=False,
    **_engine_options(settings.DATABASE_URL_ASYNC_CLEAN),
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    One AsyncSession per request. Uncommitted work is rolled back on error.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
