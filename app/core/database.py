"""Async database engine and session factory."""

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from app.core.config import get_settings
from app.core.errors import StorageError

logger = logging.getLogger(__name__)

settings = get_settings()


def configure_sqlite(eng: AsyncEngine) -> AsyncEngine:
    """Make every SQLite transaction take the write lock up front.

    The driver's lazy BEGIN lets two connections both read the balance and
    then deadlock upgrading to a write lock. ``BEGIN IMMEDIATE`` serializes
    writers at transaction start, which gives the same effect as row locks
    on PostgreSQL for the conditional balance updates.
    """

    @event.listens_for(eng.sync_engine, "connect")
    def _on_connect(dbapi_connection, _record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return eng


def _create_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        return configure_sqlite(
            create_async_engine(url, echo=False, connect_args={"timeout": 30})
        )
    return create_async_engine(
        url,
        echo=False,
        pool_size=20,
        max_overflow=10,
    )


engine = _create_engine(settings.database_url)

async_session_factory = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async DB session."""
    async with async_session_factory() as session:
        yield session


async def init_db() -> None:
    """Create all tables. Use Alembic migrations in production."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


@asynccontextmanager
async def storage_errors(session: AsyncSession, action: str) -> AsyncIterator[None]:
    """Roll back and re-raise database failures as StorageError."""
    try:
        yield
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("%s failed, rolled back: %s", action, exc.__class__.__name__)
        raise StorageError(f"{action} failed; safe to retry") from exc
