"""
Database Session Management

Job-store connection for sync records.
Uses SQLAlchemy async with connection pooling.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from portcullis.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""
    pass


def create_engine(settings: Optional[Settings] = None) -> AsyncEngine:
    """Build an async engine for the configured database URL."""
    settings = settings or get_settings()
    db_url = settings.async_database_url
    kwargs = {"echo": settings.debug, "pool_pre_ping": True}
    if not db_url.startswith("sqlite"):
        kwargs.update({"pool_size": 10, "max_overflow": 20})
    engine = create_async_engine(db_url, **kwargs)
    logger.info("Database engine created (%s)", engine.url.get_backend_name())
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create tables that do not exist yet."""
    # models must be imported so their tables are on Base.metadata
    from portcullis.db import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")
