"""Publish stats API endpoints."""

from datetime import UTC, datetime, timedelta
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from exposure_stats.aggregators.publish_stats import truncate_hour
from exposure_stats.core.database import get_async_session
from exposure_stats.schemas import (
    FlushResponse,
    HealthAuthorityStatsResponse,
    HourlyStatsResponse,
)
from exposure_stats.services import StatsStore, get_aggregator

logger = structlog.get_logger()

router = APIRouter(prefix="/stats", tags=["stats"])


def get_default_range() -> tuple[datetime, datetime]:
    """Get default time range (last 24 hours, naive UTC)."""
    end = datetime.now(UTC).replace(tzinfo=None)
    return end - timedelta(hours=24), end


def _as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        return dt.astimezone(UTC).replace(tzinfo=None)
    return dt


@router.post("/flush", response_model=FlushResponse)
async def flush_stats() -> FlushResponse:
    """Merge all pending records into the database now."""
    records_written = await get_aggregator().flush()
    return FlushResponse(records_written=records_written)


@router.get("/{health_authority_id}", response_model=HealthAuthorityStatsResponse)
async def get_health_authority_stats(
    health_authority_id: int,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    start: Annotated[datetime | None, Query(description="Start time (default: 24 hours ago)")] = None,
    end: Annotated[datetime | None, Query(description="End time (default: now)")] = None,
) -> HealthAuthorityStatsResponse:
    """Get stored hourly publish stats for a health authority."""
    default_start, default_end = get_default_range()
    start = _as_naive_utc(start or default_start)
    end = _as_naive_utc(end or default_end)

    if start > end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start must be before or equal to end",
        )

    start = truncate_hour(start)

    records = await StatsStore().list_hours(session, health_authority_id, start, end)

    logger.debug(
        "Stats fetched",
        health_authority_id=health_authority_id,
        hours=len(records),
    )

    return HealthAuthorityStatsResponse(
        health_authority_id=health_authority_id,
        start=start,
        end=end,
        hours=[HourlyStatsResponse.model_validate(r) for r in records],
    )


@router.get("/{health_authority_id}/pending", response_model=list[HourlyStatsResponse])
async def get_pending_stats(health_authority_id: int) -> list[HourlyStatsResponse]:
    """Get in-memory stats not yet flushed to the database."""
    return [
        HourlyStatsResponse.model_validate(r)
        for r in get_aggregator().pending(health_authority_id)
    ]
