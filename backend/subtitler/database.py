"""Async database engine, session factory and declarative base."""
import logging
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from subtitler.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_session_factory(database_url: str, **engine_kwargs) -> tuple[AsyncEngine, async_sessionmaker]:
    """
    Build an engine and a session factory for the given URL.

    Sessions keep their objects loaded after commit so that job records
    can be handed out of the repository without further IO.
    """
    engine = create_async_engine(database_url, **engine_kwargs)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    return engine, session_factory


engine, AsyncSessionLocal = create_session_factory(settings.DATABASE_URL)


async def init_db(bind: AsyncEngine | None = None):
    """Create tables if they do not exist yet."""
    # Model import registers the table on Base.metadata
    from subtitler.models import job  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a database session."""
    async with AsyncSessionLocal() as session:
        yield session
