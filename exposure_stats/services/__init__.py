"""Stats aggregation and persistence services."""

from exposure_stats.services.stats_aggregator import (
    StatsAggregator,
    get_aggregator,
    record_publish_handler,
)
from exposure_stats.services.stats_store import StatsStore, record_from_row

__all__ = [
    # Aggregation
    "StatsAggregator",
    "get_aggregator",
    "record_publish_handler",
    # Storage
    "StatsStore",
    "record_from_row",
]
