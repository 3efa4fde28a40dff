"""
Live subscriptions over the conversation and message collections.

A subscription runs a filtered, capped, unsorted query, delivers the result as a
full snapshot, then re-runs the query every time the realtime bus signals a change
on its channel. Consumers must treat each snapshot as the complete matching set.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pymongo.errors import OperationFailure, PyMongoError

from pharmachat.core.exceptions import SubscriptionError
from pharmachat.utils.realtime_bus import conversations_channel, messages_channel


logger = logging.getLogger(__name__)

QueryFn = Callable[[], Awaitable[List[Dict[str, Any]]]]

# OperationFailure codes
UNAUTHORIZED = 13
INDEX_NOT_FOUND = 27
NO_QUERY_EXECUTION_PLANS = 291


@dataclass
class Snapshot:
    items: List[Dict[str, Any]] = field(default_factory=list)
    timed_out: bool = False
    error: Optional[SubscriptionError] = None


def classify_store_error(exc: Exception) -> SubscriptionError:
    if isinstance(exc, OperationFailure):
        if exc.code == UNAUTHORIZED:
            return SubscriptionError(SubscriptionError.PERMISSION_DENIED, str(exc))
        if exc.code in (INDEX_NOT_FOUND, NO_QUERY_EXECUTION_PLANS):
            return SubscriptionError(SubscriptionError.PRECONDITION_FAILED, str(exc))
    return SubscriptionError(SubscriptionError.UNKNOWN, str(exc))


_CLOSED = object()


class Subscription:

    def __init__(
        self,
        name: str,
        query: QueryFn,
        bus,
        channel: str,
        watchdog_seconds: Optional[float] = None,
    ) -> None:
        self.name = name
        self._query = query
        self._bus = bus
        self._channel = channel
        self._watchdog_seconds = watchdog_seconds
        self._queue: asyncio.Queue = asyncio.Queue()
        self._dirty = asyncio.Event()
        self._closed = False
        self._received_first = False
        self._bus_sub = None
        self._tasks: List[asyncio.Task] = []
        self._watchdog: Optional[asyncio.TimerHandle] = None

    @property
    def active(self) -> bool:
        return not self._closed

    async def start(self) -> "Subscription":
        # listen before the first query so no change between the two is lost
        self._bus_sub = await self._bus.subscribe(self._channel, self._on_change)
        self._tasks.append(asyncio.create_task(self._listen()))
        self._tasks.append(asyncio.create_task(self._pump()))
        if self._watchdog_seconds is not None:
            loop = asyncio.get_running_loop()
            self._watchdog = loop.call_later(self._watchdog_seconds, self._on_watchdog)
        logger.debug("Subscription %s opened on %s", self.name, self._channel)
        return self

    def cancel(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._watchdog is not None:
            self._watchdog.cancel()
        for task in self._tasks:
            task.cancel()
        # the listener task may never have started
        if self._bus_sub is not None:
            self._bus_sub.detach()
        self._queue.put_nowait(_CLOSED)
        logger.debug("Subscription %s cancelled", self.name)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Snapshot:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._closed:
            raise StopAsyncIteration
        return item

    async def _on_change(self, message: str) -> None:
        self._dirty.set()

    async def _listen(self) -> None:
        try:
            await self._bus_sub.run()
        finally:
            await self._bus_sub.cancel()

    async def _pump(self) -> None:
        try:
            while not self._closed:
                items = await self._query()
                self._deliver(Snapshot(items=items))
                await self._dirty.wait()
                self._dirty.clear()
        except PyMongoError as exc:
            self._fail(classify_store_error(exc))
        except Exception as exc:
            logger.exception("Subscription %s query raised", self.name)
            self._fail(classify_store_error(exc))

    def _fail(self, error: SubscriptionError) -> None:
        if error.code == SubscriptionError.PERMISSION_DENIED:
            logger.error("Subscription %s: permission denied, check database access rules", self.name)
        elif error.code == SubscriptionError.PRECONDITION_FAILED:
            logger.error("Subscription %s: query needs an index that is not provisioned", self.name)
        else:
            logger.error("Subscription %s failed: %s", self.name, error.message)
        self._deliver(Snapshot(error=error))

    def _deliver(self, snapshot: Snapshot) -> None:
        if self._closed:
            return
        self._received_first = True
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        self._queue.put_nowait(snapshot)

    def _on_watchdog(self) -> None:
        self._watchdog = None
        if self._closed or self._received_first:
            return
        logger.warning(
            "Subscription %s: no snapshot after %.1fs, the query may need an index",
            self.name,
            self._watchdog_seconds,
        )
        # loading ends here; the query keeps running and may still deliver late
        self._queue.put_nowait(Snapshot(timed_out=True))


class SubscriptionSlot:
    """Holds at most one live subscription for one logical view slot."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._current: Optional[Subscription] = None

    @property
    def current(self) -> Optional[Subscription]:
        return self._current

    def replace(self, subscription: Subscription) -> None:
        self.cancel()
        self._current = subscription

    def cancel(self) -> None:
        if self._current is not None:
            self._current.cancel()
        self._current = None


class ChangeFeed:

    def __init__(
        self,
        conversation_repo,
        message_repo,
        bus,
        conversation_limit: int = 100,
        message_limit: int = 100,
        watchdog_seconds: Optional[float] = 5.0,
    ) -> None:
        self._conversation_repo = conversation_repo
        self._message_repo = message_repo
        self._bus = bus
        self._conversation_limit = conversation_limit
        self._message_limit = message_limit
        self._watchdog_seconds = watchdog_seconds

    async def subscribe_conversations(self, pharmacy_owner_id: str) -> Subscription:
        async def query() -> List[Dict[str, Any]]:
            return await self._conversation_repo.list_active_for_owner(pharmacy_owner_id, limit=self._conversation_limit)

        subscription = Subscription(
            f"conversations[{pharmacy_owner_id}]",
            query,
            self._bus,
            conversations_channel(pharmacy_owner_id),
            watchdog_seconds=self._watchdog_seconds,
        )
        return await subscription.start()

    async def subscribe_messages(self, conversation_id: str) -> Subscription:
        async def query() -> List[Dict[str, Any]]:
            return await self._message_repo.list_for_conversation(conversation_id, limit=self._message_limit)

        subscription = Subscription(
            f"messages[{conversation_id}]",
            query,
            self._bus,
            messages_channel(conversation_id),
            watchdog_seconds=self._watchdog_seconds,
        )
        return await subscription.start()
