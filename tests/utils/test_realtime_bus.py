"""Tests for the realtime bus handles."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import RedisError

from pharmachat.utils.realtime_bus import LocalBus, _RedisSubscription, conversations_channel, messages_channel


async def _listen(bus, channel):
    received = []

    async def on_message(message):
        received.append(message)

    sub = await bus.subscribe(channel, on_message)
    task = asyncio.create_task(sub.run())
    return received, sub, task


class TestLocalBus:
    """SUT: LocalBus"""

    async def test_fanout_to_channel_only(self):
        bus = LocalBus()
        a, sub_a, task_a = await _listen(bus, "messages:c1")
        b, sub_b, task_b = await _listen(bus, "messages:c2")
        await bus.publish("messages:c1", "ping")
        await asyncio.sleep(0)
        assert a == ["ping"]
        assert b == []
        for sub, task in ((sub_a, task_a), (sub_b, task_b)):
            await sub.cancel()
            await task

    async def test_buffered_before_run(self):
        bus = LocalBus()
        received = []

        async def on_message(message):
            received.append(message)

        sub = await bus.subscribe("ch", on_message)
        await bus.publish("ch", "early")
        task = asyncio.create_task(sub.run())
        await asyncio.sleep(0)
        assert received == ["early"]
        await sub.cancel()
        await task

    async def test_cancel_detaches(self):
        bus = LocalBus()
        _, sub, task = await _listen(bus, "ch")
        assert bus.subscriber_count("ch") == 1
        await sub.cancel()
        await task
        assert bus.subscriber_count("ch") == 0

    async def test_close_stops_runners(self):
        bus = LocalBus()
        _, _, task = await _listen(bus, "ch")
        await bus.close()
        await asyncio.wait_for(task, 1.0)

    async def test_detach_without_runner(self):
        bus = LocalBus()
        sub = await bus.subscribe("ch", AsyncMock())
        sub.detach()
        sub.detach()
        assert bus.subscriber_count("ch") == 0


class TestRedisSubscription:
    """SUT: _RedisSubscription"""

    def _pubsub(self):
        pubsub = MagicMock()
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        return pubsub

    async def test_detach_releases_connection(self):
        pubsub = self._pubsub()
        sub = _RedisSubscription(pubsub, "messages:c1", AsyncMock())
        sub.detach()
        await asyncio.sleep(0)
        pubsub.unsubscribe.assert_awaited_once_with("messages:c1")
        pubsub.aclose.assert_awaited_once()

    async def test_cancel_after_detach_closes_once(self):
        pubsub = self._pubsub()
        sub = _RedisSubscription(pubsub, "messages:c1", AsyncMock())
        sub.detach()
        await sub.cancel()
        await sub.cancel()
        pubsub.aclose.assert_awaited_once()

    async def test_unsubscribe_error_still_closes(self):
        pubsub = self._pubsub()
        pubsub.unsubscribe.side_effect = RedisError("gone")
        sub = _RedisSubscription(pubsub, "messages:c1", AsyncMock())
        await sub.cancel()
        pubsub.aclose.assert_awaited_once()


def test_channel_names():
    assert conversations_channel("o1") == "conversations:o1"
    assert messages_channel("c1") == "messages:c1"
