"""Shared fixtures: an in-memory ledger database and an API test client."""

from collections.abc import AsyncGenerator, Generator
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  (registers every table on Base.metadata)
from app.models.base import Base, get_async_session


@pytest_asyncio.fixture
async def session() -> AsyncGenerator[AsyncSession, None]:
    """A session on a fresh in-memory SQLite ledger."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    maker = async_sessionmaker(engine, expire_on_commit=False)
    async with maker() as s:
        yield s
    await engine.dispose()


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """API client; CRUD calls are patched per test, so no database is used."""
    from app.main import app

    async def _no_session() -> AsyncGenerator[MagicMock, None]:
        yield MagicMock()

    app.dependency_overrides[get_async_session] = _no_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
