"""Hourly publish statistics for a single health authority.

Each publish (upload of temporary exposure keys) is folded into one
``HourlyPublishRecord`` keyed by ``(health_authority_id, hour)``. The
array-shaped fields are positional and their lengths are part of the
stored schema:

    publish_count     3 counters, by platform (Android, iOS, other)
    oldest_tek_days   15 buckets, days 0..13 plus an overflow for >= 14
    onset_age_days    29 buckets, days 0..27 plus an overflow for >= 28

Accumulation never fails. Out of range day counts are clamped into the
first or last bucket and unknown platforms are counted as "other".
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime

from exposure_stats.schemas.publish import PublishEvent

PLATFORM_ANDROID = "Android"
PLATFORM_IOS = "iOS"

NUM_PLATFORMS = 3
ANDROID_INDEX = 0
IOS_INDEX = 1
OTHER_PLATFORM_INDEX = 2

MAX_OLDEST_TEK_DAYS = 14
MAX_ONSET_DAYS = 28
OLDEST_TEK_BUCKETS = MAX_OLDEST_TEK_DAYS + 1
ONSET_AGE_BUCKETS = MAX_ONSET_DAYS + 1


def bucket_index(value: int, max_exact: int) -> int:
    """Clamp a day count into ``[0, max_exact]``.

    Negative values land in bucket 0, values above ``max_exact`` land in
    the overflow bucket ``max_exact``.
    """
    return min(max(value, 0), max_exact)


def platform_index(platform: str) -> int:
    """Map a platform name to its ``publish_count`` position."""
    if platform == PLATFORM_ANDROID:
        return ANDROID_INDEX
    if platform == PLATFORM_IOS:
        return IOS_INDEX
    return OTHER_PLATFORM_INDEX


def truncate_hour(dt: datetime) -> datetime:
    """Truncate a timestamp to its hour as a naive UTC datetime."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC).replace(tzinfo=None)
    return dt.replace(minute=0, second=0, microsecond=0)


def _zeros(n: int) -> list[int]:
    return [0] * n


@dataclass
class HourlyPublishRecord:
    """Rollup of all publishes for one health authority in one UTC hour."""

    health_authority_id: int
    hour: datetime
    publish_count: list[int] = field(default_factory=lambda: _zeros(NUM_PLATFORMS))
    tek_count: int = 0
    revision_count: int = 0
    oldest_tek_days: list[int] = field(default_factory=lambda: _zeros(OLDEST_TEK_BUCKETS))
    onset_age_days: list[int] = field(default_factory=lambda: _zeros(ONSET_AGE_BUCKETS))
    missing_onset: int = 0

    def __post_init__(self) -> None:
        for name, expected in (
            ("publish_count", NUM_PLATFORMS),
            ("oldest_tek_days", OLDEST_TEK_BUCKETS),
            ("onset_age_days", ONSET_AGE_BUCKETS),
        ):
            got = len(getattr(self, name))
            if got != expected:
                raise ValueError(f"{name} must have {expected} entries, got {got}")

    @classmethod
    def init_hour(cls, health_authority_id: int, hour: datetime) -> "HourlyPublishRecord":
        """Create an empty record for the hour containing ``hour``."""
        return cls(health_authority_id=health_authority_id, hour=truncate_hour(hour))

    @property
    def key(self) -> tuple[int, datetime]:
        return (self.health_authority_id, self.hour)

    @property
    def total_publishes(self) -> int:
        return sum(self.publish_count)

    def add_publish(self, event: PublishEvent) -> None:
        """Fold one publish event into this record."""
        self.publish_count[platform_index(event.platform)] += 1
        self.tek_count += event.num_teks

        # Revisions resubmit keys that were already counted, so they are
        # kept out of the age distributions.
        if event.revision:
            self.revision_count += 1
            return

        self.oldest_tek_days[bucket_index(event.oldest_days, MAX_OLDEST_TEK_DAYS)] += 1

        if event.missing_onset:
            self.missing_onset += 1
            return

        self.onset_age_days[bucket_index(event.onset_days_ago, MAX_ONSET_DAYS)] += 1

    def merge(self, other: "HourlyPublishRecord") -> None:
        """Add every counter of ``other`` into this record.

        Raises:
            ValueError: If the records belong to different keys.
        """
        if self.key != other.key:
            raise ValueError(f"cannot merge stats for {other.key} into {self.key}")

        self.publish_count = [a + b for a, b in zip(self.publish_count, other.publish_count)]
        self.tek_count += other.tek_count
        self.revision_count += other.revision_count
        self.oldest_tek_days = [a + b for a, b in zip(self.oldest_tek_days, other.oldest_tek_days)]
        self.onset_age_days = [a + b for a, b in zip(self.onset_age_days, other.onset_age_days)]
        self.missing_onset += other.missing_onset


def apply_publish(record: HourlyPublishRecord, event: PublishEvent) -> HourlyPublishRecord:
    """Apply ``event`` to ``record`` and return the same record."""
    record.add_publish(event)
    return record
