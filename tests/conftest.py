"""Shared test fixtures for reposhadow."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from reposhadow.config import Settings
from reposhadow.models import Base
from reposhadow.repository.memory import MemoryRepository

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings with a temporary database and small queues and batches."""
    db_path = tmp_path / "shadow.db"
    return Settings(
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        queue_capacity=2,
        insert_batch_size=3,
        max_reported_mismatches=10,
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the shadow schema."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def repository() -> MemoryRepository:
    """An empty in-memory repository."""
    return MemoryRepository(connections=3)
