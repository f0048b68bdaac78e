"""Pydantic schemas for publish events and stats responses."""

from exposure_stats.schemas.publish import PublishEvent, PublishNotification
from exposure_stats.schemas.stats import (
    FlushResponse,
    HealthAuthorityStatsResponse,
    HourlyStatsResponse,
)

__all__ = [
    "PublishEvent",
    "PublishNotification",
    "HourlyStatsResponse",
    "HealthAuthorityStatsResponse",
    "FlushResponse",
]
