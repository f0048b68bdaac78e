"""Durable storage for hourly publish statistics."""

from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from exposure_stats.aggregators.publish_stats import HourlyPublishRecord, truncate_hour
from exposure_stats.models.stats import HealthAuthorityStats

logger = structlog.get_logger()


def record_from_row(row: HealthAuthorityStats) -> HourlyPublishRecord:
    """Build an in-memory record from a database row."""
    return HourlyPublishRecord(
        health_authority_id=row.health_authority_id,
        hour=row.hour,
        publish_count=list(row.publish_count),
        tek_count=row.tek_count,
        revision_count=row.revision_count,
        oldest_tek_days=list(row.oldest_tek_days),
        onset_age_days=list(row.onset_age_days),
        missing_onset=row.missing_onset,
    )


class StatsStore:
    """Reads and merges hourly publish statistics.

    Callers own the session and its transaction. ``merge_record`` locks the
    existing row, so concurrent writers for the same hour are serialized
    by the database.

    Usage:
        store = StatsStore()
        async with async_session_factory() as session:
            await store.merge_record(session, record)
            await session.commit()
    """

    async def get_hour(
        self,
        session: AsyncSession,
        health_authority_id: int,
        hour: datetime,
    ) -> HourlyPublishRecord | None:
        """Load the stored record for one hour, if any."""
        row = await session.get(
            HealthAuthorityStats,
            (health_authority_id, truncate_hour(hour)),
        )
        return record_from_row(row) if row else None

    async def merge_record(self, session: AsyncSession, record: HourlyPublishRecord) -> HourlyPublishRecord:
        """Add ``record`` into the stored row for its key.

        Returns:
            The merged record as it will be stored.
        """
        query = (
            select(HealthAuthorityStats)
            .where(HealthAuthorityStats.health_authority_id == record.health_authority_id)
            .where(HealthAuthorityStats.hour == record.hour)
            .with_for_update()
        )
        result = await session.execute(query)
        row = result.scalar_one_or_none()

        if row is None:
            merged = HourlyPublishRecord.init_hour(record.health_authority_id, record.hour)
            merged.merge(record)
            row = HealthAuthorityStats(
                health_authority_id=merged.health_authority_id,
                hour=merged.hour,
            )
            session.add(row)
        else:
            merged = record_from_row(row)
            merged.merge(record)

        # JSON columns are replaced wholesale so the change is tracked
        row.publish_count = merged.publish_count
        row.tek_count = merged.tek_count
        row.revision_count = merged.revision_count
        row.oldest_tek_days = merged.oldest_tek_days
        row.onset_age_days = merged.onset_age_days
        row.missing_onset = merged.missing_onset
        await session.flush()

        logger.debug(
            "Stats merged",
            health_authority_id=record.health_authority_id,
            hour=record.hour.isoformat(),
            publishes=merged.total_publishes,
        )
        return merged

    async def list_hours(
        self,
        session: AsyncSession,
        health_authority_id: int,
        start: datetime,
        end: datetime,
    ) -> list[HourlyPublishRecord]:
        """Stored records for hours in ``[start, end]``, oldest first."""
        query = (
            select(HealthAuthorityStats)
            .where(HealthAuthorityStats.health_authority_id == health_authority_id)
            .where(HealthAuthorityStats.hour >= truncate_hour(start))
            .where(HealthAuthorityStats.hour <= truncate_hour(end))
            .order_by(HealthAuthorityStats.hour)
        )
        result = await session.execute(query)
        return [record_from_row(row) for row in result.scalars().all()]
