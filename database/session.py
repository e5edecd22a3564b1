"""
Async engine and request-scoped sessions.

Deployments run on PostgreSQL through asyncpg; other async URLs (the test
suite uses ``sqlite+aiosqlite``) keep the driver's default pool.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncGenerator, Dict

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config.settings import config

logger = logging.getLogger(__name__)


def _pool_options(url: str) -> Dict[str, Any]:
    if make_url(url).get_backend_name() != "postgresql":
        return {}
    return {"pool_size": 10, "max_overflow": 20, "pool_pre_ping": True, "pool_recycle": 3600}


engine = create_async_engine(config.database_url, echo=False, **_pool_options(config.database_url))

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """One session per request: committed when the route returns, rolled back if it raises."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            logger.debug("Request failed, rolling back session")
            await session.rollback()
            raise
