"""In-memory aggregation of publish events into hourly stats."""

import asyncio
import time
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exposure_stats.aggregators.publish_stats import (
    HourlyPublishRecord,
    platform_index,
    truncate_hour,
)
from exposure_stats.core.database import async_session_factory
from exposure_stats.core.observability import (
    record_flush,
    record_publish_aggregated,
    set_pending_records,
)
from exposure_stats.schemas.publish import PublishNotification
from exposure_stats.services.stats_store import StatsStore

logger = structlog.get_logger()

PLATFORM_LABELS = ("android", "ios", "other")

StatsKey = tuple[int, datetime]


class StatsAggregator:
    """Folds publish events into per health authority, per hour records.

    All events pass through a single lock, so each record has one writer.
    Pending records are merged into the database by ``flush``; when and how
    often to flush is up to the caller.

    Usage:
        aggregator = StatsAggregator()
        await aggregator.record_publish(notification)
        # ... later ...
        await aggregator.flush()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        store: StatsStore | None = None,
    ):
        """Initialize the aggregator.

        Args:
            session_factory: Session factory used by ``flush``.
                Defaults to the application session factory.
            store: Storage used by ``flush``. Defaults to a new StatsStore.
        """
        self._session_factory = session_factory or async_session_factory
        self._store = store or StatsStore()
        self._records: dict[StatsKey, HourlyPublishRecord] = {}
        self._lock = asyncio.Lock()
        self._events_aggregated = 0
        self._flushes = 0
        self._flush_failures = 0

    async def record_publish(self, notification: PublishNotification) -> HourlyPublishRecord:
        """Apply one publish to the record for its health authority and hour.

        Returns:
            The pending record the event was folded into.
        """
        key = (notification.health_authority_id, truncate_hour(notification.published_at))

        async with self._lock:
            record = self._records.get(key)
            if record is None:
                record = HourlyPublishRecord.init_hour(*key)
                self._records[key] = record
                set_pending_records(len(self._records))

            record.add_publish(notification.publish)
            self._events_aggregated += 1

        record_publish_aggregated(PLATFORM_LABELS[platform_index(notification.publish.platform)])
        return record

    async def flush(self) -> int:
        """Merge all pending records into the database.

        On failure the records are put back so the next flush retries them.

        Returns:
            Number of records written.
        """
        async with self._lock:
            records = list(self._records.values())
            self._records.clear()
            set_pending_records(0)

        if not records:
            logger.debug("No pending stats to flush")
            return 0

        start_time = time.perf_counter()
        try:
            async with self._session_factory() as session:
                try:
                    for record in records:
                        await self._store.merge_record(session, record)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        except Exception as e:
            duration = time.perf_counter() - start_time
            self._flush_failures += 1
            record_flush(len(records), duration, success=False)
            logger.error("Failed to flush stats", count=len(records), error=str(e))
            await self._requeue(records)
            raise

        duration = time.perf_counter() - start_time
        self._flushes += 1
        record_flush(len(records), duration, success=True)

        logger.info(
            "Stats flushed",
            records_written=len(records),
            duration_ms=round(duration * 1000, 2),
        )
        return len(records)

    async def _requeue(self, records: list[HourlyPublishRecord]) -> None:
        """Merge unflushed records back into the pending map."""
        async with self._lock:
            for record in records:
                pending = self._records.get(record.key)
                if pending is None:
                    self._records[record.key] = record
                else:
                    pending.merge(record)
            set_pending_records(len(self._records))

    def pending(self, health_authority_id: int | None = None) -> list[HourlyPublishRecord]:
        """Pending records, oldest hour first, optionally for one health authority."""
        records = [
            r for r in self._records.values()
            if health_authority_id is None or r.health_authority_id == health_authority_id
        ]
        return sorted(records, key=lambda r: r.key)

    @property
    def stats(self) -> dict:
        """Get aggregator statistics."""
        return {
            "pending_records": len(self._records),
            "events_aggregated": self._events_aggregated,
            "flushes": self._flushes,
            "flush_failures": self._flush_failures,
        }


# Global aggregator instance
_aggregator: StatsAggregator | None = None


def get_aggregator() -> StatsAggregator:
    """Get the global aggregator instance."""
    global _aggregator
    if _aggregator is None:
        _aggregator = StatsAggregator()
    return _aggregator


async def record_publish_handler(notification: PublishNotification) -> None:
    """Handler function for the publish consumer.

    Registered with the PublishEventConsumer to fold incoming
    publish events into the global aggregator.
    """
    aggregator = get_aggregator()
    await aggregator.record_publish(notification)
