"""Tests for the Redis publish event consumer."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from exposure_stats.consumers.publish_consumer import PublishEventConsumer
from exposure_stats.schemas.publish import PublishNotification
from tests.conftest import make_notification


def _payload(**overrides) -> str:
    return make_notification(**overrides).model_dump_json()


@pytest.fixture
def consumer() -> PublishEventConsumer:
    return PublishEventConsumer(redis_url="redis://localhost:6379/15", channel="test:publish")


class TestProcessMessage:
    """Tests for decoding and dispatching single messages."""

    @pytest.mark.asyncio
    async def test_valid_message_dispatched(self, consumer: PublishEventConsumer) -> None:
        handler = AsyncMock(__name__="handler")
        consumer.register_handler(handler)

        await consumer._process_message(_payload(health_authority_id=9, platform="iOS"))

        handler.assert_awaited_once()
        (notification,), _ = handler.call_args
        assert isinstance(notification, PublishNotification)
        assert notification.health_authority_id == 9
        assert notification.publish.platform == "iOS"
        assert consumer.stats["events_processed"] == 1

    @pytest.mark.asyncio
    async def test_invalid_json_skipped(self, consumer: PublishEventConsumer) -> None:
        handler = AsyncMock(__name__="handler")
        consumer.register_handler(handler)

        await consumer._process_message("{not json")

        handler.assert_not_awaited()
        assert consumer.stats["events_failed"] == 1

    @pytest.mark.asyncio
    async def test_invalid_schema_skipped(self, consumer: PublishEventConsumer) -> None:
        handler = AsyncMock(__name__="handler")
        consumer.register_handler(handler)

        await consumer._process_message(json.dumps({"health_authority_id": 1}))

        handler.assert_not_awaited()
        assert consumer.stats["events_failed"] == 1

    @pytest.mark.asyncio
    async def test_message_without_onset_fields_rejected(self, consumer: PublishEventConsumer) -> None:
        handler = AsyncMock(__name__="handler")
        consumer.register_handler(handler)
        message = json.loads(_payload())
        del message["publish"]["onset_days_ago"]
        del message["publish"]["missing_onset"]

        await consumer._process_message(json.dumps(message))

        handler.assert_not_awaited()
        assert consumer.stats["events_failed"] == 1
        assert consumer.stats["events_processed"] == 0

    @pytest.mark.asyncio
    async def test_unknown_platform_accepted(self, consumer: PublishEventConsumer) -> None:
        handler = AsyncMock(__name__="handler")
        consumer.register_handler(handler)

        await consumer._process_message(_payload(platform="palm", oldest_days=-1))

        handler.assert_awaited_once()
        assert consumer.stats["events_failed"] == 0

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_others(self, consumer: PublishEventConsumer) -> None:
        failing = AsyncMock(__name__="failing", side_effect=RuntimeError("boom"))
        second = AsyncMock(__name__="second")
        consumer.register_handler(failing)
        consumer.register_handler(second)

        await consumer._process_message(_payload())

        second.assert_awaited_once()
        assert consumer.stats["events_processed"] == 1


class TestLifecycle:
    """Tests for starting and stopping the consumer."""

    @pytest.mark.asyncio
    async def test_stop_when_not_running_is_noop(self, consumer: PublishEventConsumer) -> None:
        await consumer.stop()
        assert not consumer.is_running

    @pytest.mark.asyncio
    async def test_start_consumes_and_stop_closes(self, consumer: PublishEventConsumer) -> None:
        payload = _payload()

        async def listen():
            yield {"type": "subscribe", "data": 1}
            yield {"type": "message", "data": payload}

        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        pubsub.listen = listen
        client = MagicMock()
        client.pubsub.return_value = pubsub
        client.aclose = AsyncMock()

        handler = AsyncMock(__name__="handler")
        consumer.register_handler(handler)

        with patch("exposure_stats.consumers.publish_consumer.redis.from_url", return_value=client):
            await consumer.start()
            assert consumer.is_running
            for _ in range(5):
                await asyncio.sleep(0)
            await consumer.stop()

        pubsub.subscribe.assert_awaited_once_with("test:publish")
        handler.assert_awaited_once()
        pubsub.unsubscribe.assert_awaited_once_with("test:publish")
        pubsub.aclose.assert_awaited_once()
        client.aclose.assert_awaited_once()
        assert not consumer.is_running
