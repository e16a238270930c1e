"""Shared pytest fixtures for all test suites."""

from collections.abc import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from backend.assistant.blob.store import InMemoryBlobStore
from backend.assistant.config import Settings
from backend.assistant.db.inmemory import InMemoryDatabase, build_inmemory_stores
from backend.assistant.db.models import Base
from backend.assistant.db.repositories import Stores
from backend.assistant.external.executor import get_breaker_registry


@pytest.fixture(autouse=True)
def reset_breakers() -> Generator[None, None, None]:
    """Circuit breakers are process-wide; isolate them per test."""
    get_breaker_registry().clear()
    yield
    get_breaker_registry().clear()


@pytest.fixture
def settings() -> Settings:
    """Settings with no API key and fast external call limits."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        openai_api_key=None,
        model_timeout_ms=2000,
        summary_timeout_ms=2000,
        upload_timeout_ms=2000,
        blob_timeout_ms=2000,
        extraction_timeout_ms=5000,
        retry_jitter_min_ms=0,
        retry_jitter_max_ms=0,
    )


@pytest.fixture
def db() -> InMemoryDatabase:
    """Empty in-memory database."""
    return InMemoryDatabase()


@pytest.fixture
def stores(db: InMemoryDatabase) -> Stores:
    """In-memory repositories over the `db` fixture."""
    return build_inmemory_stores(db)


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    """Empty in-memory blob store."""
    return InMemoryBlobStore()


@pytest_asyncio.fixture
async def sqlite_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine for SQLite-backed store tests.

    A single shared connection keeps the in-memory database alive for the
    duration of the test.

    Usage:
        @pytest.mark.asyncio
        async def test_something(sqlite_engine):
            async with AsyncSession(sqlite_engine) as session:
                # ... test code
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def sqlite_session(sqlite_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Create async session for SQLite-backed store tests."""
    async with AsyncSession(sqlite_engine, expire_on_commit=False) as session:
        yield session
        await session.rollback()
