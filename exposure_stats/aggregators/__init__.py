"""Publish statistics aggregation logic."""

from exposure_stats.aggregators.publish_stats import (
    HourlyPublishRecord,
    apply_publish,
    bucket_index,
    platform_index,
    truncate_hour,
)

__all__ = [
    "HourlyPublishRecord",
    "apply_publish",
    "bucket_index",
    "platform_index",
    "truncate_hour",
]
