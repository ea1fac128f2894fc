"""
Database Session Management - Async SQLAlchemy engines and sessions.

Writes (payments, grants, usage counters) always go to the primary.
Catalog and dashboard reads use READ_DATABASE_URL when it points at a
replica; otherwise they share the primary's engine.
"""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from storefront.config import settings
from storefront.observability.tracing import instrument_sqlalchemy


@dataclass
class _Database:
    engine: AsyncEngine
    sessions: async_sessionmaker[AsyncSession]


# Keyed by URL so a missing replica reuses the primary pool
_databases: dict[str, _Database] = {}


def _database(url: str) -> _Database:
    if url not in _databases:
        engine = create_async_engine(
            url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
            pool_pre_ping=True,
            echo=settings.log_level == "DEBUG",
        )
        instrument_sqlalchemy(engine)
        _databases[url] = _Database(
            engine=engine,
            sessions=async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False),
        )
    return _databases[url]


def get_write_session_factory() -> async_sessionmaker[AsyncSession]:
    return _database(settings.database_url).sessions


def get_read_session_factory() -> async_sessionmaker[AsyncSession]:
    return _database(settings.read_database_url).sessions


@asynccontextmanager
async def get_write_session() -> AsyncIterator[AsyncSession]:
    """
    Primary-database session for work outside a request.

    Usage:
        async with get_write_session() as session:
            await GptModelService(session).sync_from_catalog()
    """
    async with get_write_session_factory()() as session:
        yield session


async def get_write_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for write database session.

    Usage:
        @router.post("/api/confirm-payment")
        async def confirm_payment(db: AsyncSession = Depends(get_write_db)):
            ...
    """
    async with get_write_session_factory()() as session:
        yield session


async def get_read_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for read-only endpoints."""
    async with get_read_session_factory()() as session:
        yield session


async def close_engines() -> None:
    """Dispose every pool (graceful shutdown)."""
    while _databases:
        _, database = _databases.popitem()
        await database.engine.dispose()
