"""Shared test fixtures for async database sessions and publish events."""

from collections.abc import AsyncGenerator
from datetime import datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from exposure_stats.core.config import Settings
from exposure_stats.models import Base
from exposure_stats.schemas.publish import PublishEvent, PublishNotification


@pytest.fixture
def settings() -> Settings:
    """Test application settings."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        redis_url="redis://localhost:6379/15",
        redis_channel="test:publish",
    )


@pytest.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an in-memory async SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(async_engine, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Create a per-test async session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def hour() -> datetime:
    """A fixed, already truncated UTC hour."""
    return datetime(2020, 10, 15, 10, 0, 0)


def make_event(**overrides) -> PublishEvent:
    """Build a non-revision Android publish event with onset, overriding fields as given."""
    fields = {
        "platform": "Android",
        "num_teks": 14,
        "revision": False,
        "oldest_days": 14,
        "onset_days_ago": 4,
        "missing_onset": False,
    }
    fields.update(overrides)
    return PublishEvent(**fields)


def make_notification(
    health_authority_id: int = 1,
    published_at: datetime | None = None,
    **overrides,
) -> PublishNotification:
    """Wrap ``make_event`` in a notification envelope."""
    return PublishNotification(
        health_authority_id=health_authority_id,
        published_at=published_at or datetime(2020, 10, 15, 10, 30, 0),
        publish=make_event(**overrides),
    )
