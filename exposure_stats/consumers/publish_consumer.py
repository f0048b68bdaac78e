"""Feeds publish notifications from a Redis channel into the stats handlers."""

import asyncio
import json
import time
from typing import Callable, Coroutine

import redis.asyncio as redis
import structlog
from pydantic import ValidationError

from exposure_stats.core.config import get_settings
from exposure_stats.core.observability import (
    record_publish_failed,
    record_publish_processing_time,
    record_publish_received,
    set_consumer_running,
)
from exposure_stats.schemas.publish import PublishNotification

settings = get_settings()
logger = structlog.get_logger()

# Type alias for publish event handler
PublishEventHandler = Callable[[PublishNotification], Coroutine[None, None, None]]


class PublishEventConsumer:
    """Turns publish channel messages into ``PublishNotification`` calls.

    Every message is validated before any handler sees it, so handlers
    only ever receive complete publish events. Bad JSON, schema errors
    and handler exceptions are each counted under their own failure
    reason and never stop the subscription.

    Usage:
        consumer = PublishEventConsumer()
        consumer.register_handler(record_publish_handler)
        await consumer.start()
        # ... later ...
        await consumer.stop()
    """

    def __init__(self, redis_url: str | None = None, channel: str | None = None):
        """Set up the consumer without connecting; ``start`` opens the subscription.

        Args:
            redis_url: Redis connection URL. Defaults to settings.redis_url.
            channel: Channel to subscribe to. Defaults to settings.redis_channel.
        """
        self.redis_url = redis_url or settings.redis_url
        self.channel = channel or settings.redis_channel
        self._client: redis.Redis | None = None
        self._pubsub: redis.client.PubSub | None = None
        self._task: asyncio.Task | None = None
        self._running = False
        self._handlers: list[PublishEventHandler] = []
        self._events_processed = 0
        self._events_failed = 0

    def register_handler(self, handler: PublishEventHandler) -> None:
        """Register a handler; handlers run in registration order."""
        self._handlers.append(handler)
        logger.debug("Handler registered", handler=handler.__name__)

    async def start(self) -> None:
        """Subscribe to the publish channel and start dispatching in the background."""
        if self._running:
            logger.warning("Consumer already running")
            return

        logger.info("Starting publish event consumer", channel=self.channel)

        self._client = redis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        self._pubsub = self._client.pubsub()
        await self._pubsub.subscribe(self.channel)

        self._running = True
        set_consumer_running(True)
        self._task = asyncio.create_task(self._consume_loop())

        logger.info("Publish event consumer started", channel=self.channel)

    async def stop(self) -> None:
        """Cancel dispatching, unsubscribe and close the Redis connection."""
        if not self._running:
            return

        logger.info(
            "Stopping publish event consumer",
            events_processed=self._events_processed,
            events_failed=self._events_failed,
        )

        self._running = False
        set_consumer_running(False)

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._pubsub:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
            self._pubsub = None

        if self._client:
            await self._client.aclose()
            self._client = None

        logger.info("Publish event consumer stopped")

    async def _consume_loop(self) -> None:
        """Dispatch channel messages until stopped; Redis errors end the loop."""
        if not self._pubsub:
            return

        logger.debug("Consumer loop started")

        try:
            async for message in self._pubsub.listen():
                if not self._running:
                    break

                # Skip subscription confirmation messages
                if message["type"] != "message":
                    continue

                await self._process_message(message["data"])

        except asyncio.CancelledError:
            logger.debug("Consumer loop cancelled")
            raise
        except redis.RedisError as e:
            logger.error("Redis error in consumer loop", error=str(e))
            raise

    async def _process_message(self, data: str) -> None:
        """Decode one message and pass it to every handler.

        Args:
            data: Raw JSON string from Redis.
        """
        start_time = time.perf_counter()
        record_publish_received()

        try:
            event_dict = json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning(
                "Invalid JSON in publish event",
                error=str(e),
                data=data[:100],  # Truncate for logging
            )
            self._events_failed += 1
            record_publish_failed("invalid_json")
            return

        try:
            notification = PublishNotification.model_validate(event_dict)
        except ValidationError as e:
            logger.warning(
                "Invalid publish event schema",
                error=str(e),
                data=event_dict,
            )
            self._events_failed += 1
            record_publish_failed("invalid_schema")
            return

        for handler in self._handlers:
            try:
                await handler(notification)
            except Exception as e:
                # Continue with other handlers even if one fails
                logger.error(
                    "Handler error",
                    handler=handler.__name__,
                    error=str(e),
                    health_authority_id=notification.health_authority_id,
                )
                record_publish_failed("handler_error")

        self._events_processed += 1

        duration = time.perf_counter() - start_time
        record_publish_processing_time(duration)

        logger.debug(
            "Publish event processed",
            health_authority_id=notification.health_authority_id,
            platform=notification.publish.platform,
            duration_ms=round(duration * 1000, 2),
        )

    @property
    def is_running(self) -> bool:
        """Whether the subscription is active."""
        return self._running

    @property
    def stats(self) -> dict:
        """Processed and failed message counts for the service stats endpoint."""
        return {
            "running": self._running,
            "events_processed": self._events_processed,
            "events_failed": self._events_failed,
            "handlers_count": len(self._handlers),
        }


# Global consumer instance
_consumer: PublishEventConsumer | None = None


def get_consumer() -> PublishEventConsumer:
    """Get the process-wide consumer, creating it on first use."""
    global _consumer
    if _consumer is None:
        _consumer = PublishEventConsumer()
    return _consumer


async def start_consumer() -> None:
    """Start the global consumer."""
    consumer = get_consumer()
    await consumer.start()


async def stop_consumer() -> None:
    """Stop the global consumer."""
    consumer = get_consumer()
    await consumer.stop()
