"""Shared test fixtures — file-backed async SQLite DB per test + test client.

A file (not ``:memory:``) so that concurrent sessions see the same database;
``configure_sqlite`` makes SQLite serialize writers at BEGIN the way row
locks do on PostgreSQL.
"""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

# Import all models so metadata is populated
import app.models  # noqa: F401
from app.core.config import get_settings
from app.core.database import configure_sqlite, get_session
from app.main import app


@pytest.fixture(autouse=True)
def _asset_storage(tmp_path, monkeypatch):
    """Keep generated asset files inside the test's tmp dir."""
    monkeypatch.setattr(get_settings(), "asset_storage_path", str(tmp_path / "assets"))


@pytest.fixture
async def engine(tmp_path):
    eng = configure_sqlite(
        create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
            echo=False,
            connect_args={"timeout": 30},
        )
    )
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def test_session_factory(engine):
    """Session factory bound to the test SQLite engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(test_session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as sess:
        yield sess
        await sess.rollback()


@pytest.fixture
async def client(test_session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client; every request gets its own DB session.

    A session per request releases SQLite's write lock when the request ends,
    so worker code running in other sessions is never blocked by a client.
    """

    async def _override_session():
        async with test_session_factory() as sess:
            yield sess

    app.dependency_overrides[get_session] = _override_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
