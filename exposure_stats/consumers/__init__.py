"""Redis Pub/Sub consumers for publish events."""

from exposure_stats.consumers.publish_consumer import (
    PublishEventConsumer,
    get_consumer,
    start_consumer,
    stop_consumer,
)

__all__ = [
    "PublishEventConsumer",
    "get_consumer",
    "start_consumer",
    "stop_consumer",
]
