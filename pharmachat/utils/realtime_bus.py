import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

import redis.asyncio as redis

from pharmachat.config import get_settings


logger = logging.getLogger(__name__)

OnMessage = Callable[[str], Awaitable[None]]


def conversations_channel(pharmacy_owner_id: str) -> str:
    return f"conversations:{pharmacy_owner_id}"


def messages_channel(conversation_id: str) -> str:
    return f"messages:{conversation_id}"


_STOP = object()


class LocalBus:
    """In-process fanout. Only reaches subscribers living in the same event loop."""

    enabled = True

    def __init__(self) -> None:
        self._channels: Dict[str, Set[asyncio.Queue]] = {}

    async def publish(self, channel: str, message: str) -> None:
        for queue in list(self._channels.get(channel, ())):
            queue.put_nowait(message)

    async def subscribe(self, channel: str, on_message: OnMessage) -> "_LocalSubscription":
        queue: asyncio.Queue = asyncio.Queue()
        self._channels.setdefault(channel, set()).add(queue)
        return _LocalSubscription(self, channel, queue, on_message)

    def subscriber_count(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    def _detach(self, channel: str, queue: asyncio.Queue) -> None:
        queues = self._channels.get(channel)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._channels[channel]

    async def close(self) -> None:
        for queues in list(self._channels.values()):
            for queue in list(queues):
                queue.put_nowait(_STOP)
        self._channels.clear()


class _LocalSubscription:

    def __init__(self, bus: LocalBus, channel: str, queue: asyncio.Queue, on_message: OnMessage) -> None:
        self._bus = bus
        self._channel = channel
        self._queue = queue
        self._on_message = on_message
        self._running = True

    async def run(self) -> None:
        while self._running:
            message = await self._queue.get()
            if message is _STOP:
                break
            await self._on_message(message)

    def detach(self) -> None:
        if not self._running:
            return
        self._running = False
        self._bus._detach(self._channel, self._queue)
        self._queue.put_nowait(_STOP)

    async def cancel(self) -> None:
        self.detach()


class RedisBus:

    enabled = True

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: OnMessage) -> "_RedisSubscription":
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        return _RedisSubscription(pubsub, channel, on_message)

    async def close(self) -> None:
        await self._redis.aclose()


class _RedisSubscription:

    def __init__(self, pubsub, channel: str, on_message: OnMessage) -> None:
        self._pubsub = pubsub
        self._channel = channel
        self._on_message = on_message
        self._running = True
        self._closing: Optional[asyncio.Task] = None

    async def run(self) -> None:
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except redis.RedisError:
                logger.exception("Redis pubsub read failed on %s", self._channel)
                await asyncio.sleep(0.5)
                continue
            if msg and msg.get("type") == "message":
                data = msg.get("data")
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                await self._on_message(data)

    def detach(self) -> None:
        """Stop reading now; the unsubscribe and connection release run as a task."""
        if not self._running:
            return
        self._running = False
        self._closing = asyncio.get_running_loop().create_task(self._close())

    async def cancel(self) -> None:
        self.detach()
        await self._closing

    async def _close(self) -> None:
        try:
            await self._pubsub.unsubscribe(self._channel)
        except redis.RedisError:
            logger.warning("Redis unsubscribe failed on %s", self._channel)
        finally:
            await self._pubsub.aclose()


_bus = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url = get_settings().REDIS_URL
    if url:
        _bus = RedisBus(url)
        logger.info("Realtime bus: redis")
    else:
        _bus = LocalBus()
        logger.info("Realtime bus: in-process")
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
    _bus = None
