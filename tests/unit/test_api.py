"""Tests for the stats API endpoints."""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exposure_stats.api import stats_router
from exposure_stats.aggregators.publish_stats import HourlyPublishRecord
from exposure_stats.core.database import get_async_session
from exposure_stats.services.stats_aggregator import StatsAggregator
from exposure_stats.services.stats_store import StatsStore
from tests.conftest import make_event, make_notification


@pytest.fixture
def app(session_factory: async_sessionmaker[AsyncSession]) -> FastAPI:
    """Create a minimal FastAPI app with the stats router on the test database."""

    async def _session() -> AsyncGenerator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app = FastAPI()
    app.include_router(stats_router)
    app.dependency_overrides[get_async_session] = _session
    return app


@pytest.fixture
def client(app: FastAPI) -> AsyncClient:
    """Create an async test client."""
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.fixture
def aggregator(session_factory: async_sessionmaker[AsyncSession]):
    """Swap the global aggregator for one bound to the test database."""
    aggregator = StatsAggregator(session_factory=session_factory)
    with patch("exposure_stats.api.stats.get_aggregator", return_value=aggregator):
        yield aggregator


class TestGetHealthAuthorityStats:
    """Tests for GET /stats/{health_authority_id}."""

    @pytest.mark.asyncio
    async def test_returns_stored_hours(
        self,
        client: AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
        hour: datetime,
    ) -> None:
        record = HourlyPublishRecord.init_hour(1, hour)
        record.add_publish(make_event())
        async with session_factory() as session:
            await StatsStore().merge_record(session, record)
            await session.commit()

        response = await client.get(
            "/stats/1",
            params={
                "start": (hour - timedelta(hours=1)).isoformat(),
                "end": (hour + timedelta(hours=1)).isoformat(),
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["health_authority_id"] == 1
        (stats,) = body["hours"]
        assert stats["publish_count"] == [1, 0, 0]
        assert stats["tek_count"] == 14
        assert len(stats["oldest_tek_days"]) == 15
        assert len(stats["onset_age_days"]) == 29
        assert stats["oldest_tek_days"][14] == 1

    @pytest.mark.asyncio
    async def test_empty_range(self, client: AsyncClient, hour: datetime) -> None:
        response = await client.get(
            "/stats/5",
            params={"start": hour.isoformat(), "end": (hour + timedelta(hours=3)).isoformat()},
        )

        assert response.status_code == 200
        assert response.json()["hours"] == []

    @pytest.mark.asyncio
    async def test_start_after_end_rejected(self, client: AsyncClient, hour: datetime) -> None:
        response = await client.get(
            "/stats/1",
            params={"start": (hour + timedelta(hours=2)).isoformat(), "end": hour.isoformat()},
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_start_after_end_within_same_hour_rejected(self, client: AsyncClient, hour: datetime) -> None:
        response = await client.get(
            "/stats/1",
            params={
                "start": (hour + timedelta(minutes=30)).isoformat(),
                "end": (hour + timedelta(minutes=15)).isoformat(),
            },
        )

        assert response.status_code == 400


class TestPendingAndFlush:
    """Tests for the pending and flush endpoints."""

    @pytest.mark.asyncio
    async def test_pending_lists_unflushed_records(
        self,
        client: AsyncClient,
        aggregator: StatsAggregator,
        hour: datetime,
    ) -> None:
        await aggregator.record_publish(make_notification(1, hour, missing_onset=True))
        await aggregator.record_publish(make_notification(2, hour))

        response = await client.get("/stats/1/pending")

        assert response.status_code == 200
        (stats,) = response.json()
        assert stats["missing_onset"] == 1

    @pytest.mark.asyncio
    async def test_flush_then_read(
        self,
        client: AsyncClient,
        aggregator: StatsAggregator,
        hour: datetime,
    ) -> None:
        await aggregator.record_publish(make_notification(1, hour, platform="iOS"))

        response = await client.post("/stats/flush")
        assert response.status_code == 200
        assert response.json() == {"records_written": 1}

        pending = await client.get("/stats/1/pending")
        assert pending.json() == []

        stored = await client.get(
            "/stats/1",
            params={"start": hour.isoformat(), "end": hour.isoformat()},
        )
        assert stored.json()["hours"][0]["publish_count"] == [0, 1, 0]
