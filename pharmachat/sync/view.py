"""
Per-session chat view: the conversation list, the selected conversation and its composer.

State of the selected conversation::

    IDLE -> LOADING -> READY <-> READY (each snapshot replaces the view)
    LOADING -> READY (empty, timed_out) on watchdog
    any -> CLOSED

The composer overlays composing / sending / uploading on READY.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from pharmachat.core.exceptions import NotFoundError, SubscriptionError
from pharmachat.core.session import OwnerSession
from pharmachat.sync.delivery import MAX_IMAGE_BYTES, Composer, ImageAttachment
from pharmachat.sync.feed import ChangeFeed, Snapshot, Subscription, SubscriptionSlot, classify_store_error
from pharmachat.sync.reconciler import ReadMarker, materialize_conversations, materialize_messages


logger = logging.getLogger(__name__)

EventCallback = Callable[[str, Dict[str, Any]], Awaitable[None]]


class ViewState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    CLOSED = "closed"


class ChatView:

    def __init__(
        self,
        session: OwnerSession,
        feed: ChangeFeed,
        writer,
        uploader,
        on_event: Optional[EventCallback] = None,
        max_image_bytes: int = MAX_IMAGE_BYTES,
    ) -> None:
        self._session = session
        self._feed = feed
        self._writer = writer
        self._on_event = on_event
        self._list_slot = SubscriptionSlot("conversations")
        self._message_slot = SubscriptionSlot("messages")
        self._tasks: Set[asyncio.Task] = set()
        self.read_marker = ReadMarker(writer, session.owner_id)
        self.composer = Composer(writer, uploader, max_image_bytes=max_image_bytes)

        self.list_state = ViewState.IDLE
        self.conversations: List[Dict[str, Any]] = []
        self.list_timed_out = False
        self.list_error: Optional[SubscriptionError] = None

        self.state = ViewState.IDLE
        self.selected: Optional[Dict[str, Any]] = None
        self.messages: List[Dict[str, Any]] = []
        self.timed_out = False
        self.error: Optional[SubscriptionError] = None

    @property
    def selected_id(self) -> Optional[str]:
        return str(self.selected["_id"]) if self.selected else None

    async def start(self) -> None:
        self.list_state = ViewState.LOADING
        try:
            subscription = await self._feed.subscribe_conversations(self._session.owner_id)
        except RedisError as exc:
            error = classify_store_error(exc)
            self.list_state = ViewState.READY
            self.list_error = error
            await self._emit_state()
            raise error from exc
        self._list_slot.replace(subscription)
        self._spawn(self._consume_conversations(subscription))
        await self._emit_state()

    async def open_conversation(self, conversation_id: str) -> None:
        if self.list_state == ViewState.CLOSED:
            raise RuntimeError("View is closed")
        conversation = self._find_conversation(conversation_id)
        if conversation is None:
            try:
                conversation = await self._writer.get_conversation(conversation_id)
            except PyMongoError as exc:
                raise classify_store_error(exc) from exc
            if conversation.get("pharmacy_owner_id") != self._session.owner_id:
                raise NotFoundError("Conversation not found")

        # open the new feed first so a failure leaves the current selection intact
        try:
            subscription = await self._feed.subscribe_messages(conversation_id)
        except RedisError as exc:
            raise classify_store_error(exc) from exc
        self._message_slot.replace(subscription)
        self.selected = conversation
        self.messages = []
        self.timed_out = False
        self.error = None
        self.state = ViewState.LOADING
        self._spawn(self._consume_messages(subscription, conversation_id))
        self.read_marker.maybe_mark(conversation)
        await self._emit_state()

    async def close_conversation(self) -> None:
        self._message_slot.cancel()
        self.selected = None
        self.messages = []
        self.timed_out = False
        self.error = None
        self.state = ViewState.IDLE
        await self._emit_state()

    async def send(self, text: Optional[str] = None, image: Optional[ImageAttachment] = None) -> Dict[str, Any]:
        try:
            return await self.composer.send(
                self.selected_id,
                self._session.owner_id,
                self._session.owner_name,
                text=text,
                image=image,
            )
        finally:
            await self._emit_state()

    def close(self) -> None:
        self._message_slot.cancel()
        self._list_slot.cancel()
        for task in list(self._tasks):
            task.cancel()
        self.state = ViewState.CLOSED
        self.list_state = ViewState.CLOSED

    def describe(self) -> Dict[str, Any]:
        return {
            "list": self.list_state.value,
            "conversation": self.state.value,
            "selected_id": self.selected_id,
            "composer": self.composer.state,
        }

    def _find_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        for conversation in self.conversations:
            if str(conversation.get("_id")) == conversation_id:
                return conversation
        return None

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _consume_conversations(self, subscription: Subscription) -> None:
        async for snapshot in subscription:
            self._apply_conversations(snapshot)
            await self._emit("conversations", {
                "items": self.conversations,
                "timed_out": snapshot.timed_out,
                "error": snapshot.error.code if snapshot.error else None,
            })

    async def _consume_messages(self, subscription: Subscription, conversation_id: str) -> None:
        async for snapshot in subscription:
            if self.selected_id != conversation_id:
                return
            self._apply_messages(snapshot)
            await self._emit("messages", {
                "conversation_id": conversation_id,
                "items": self.messages,
                "timed_out": snapshot.timed_out,
                "error": snapshot.error.code if snapshot.error else None,
            })

    def _apply_conversations(self, snapshot: Snapshot) -> None:
        self.list_state = ViewState.READY
        self.list_error = snapshot.error
        if snapshot.error is not None or snapshot.timed_out:
            self.list_timed_out = snapshot.timed_out
            self.conversations = []
            return
        self.list_timed_out = False
        self.conversations = materialize_conversations(snapshot.items)
        if self.selected is not None:
            fresh = self._find_conversation(self.selected_id)
            if fresh is not None:
                self.selected = fresh

    def _apply_messages(self, snapshot: Snapshot) -> None:
        self.state = ViewState.READY
        self.error = snapshot.error
        if snapshot.error is not None or snapshot.timed_out:
            self.timed_out = snapshot.timed_out
            self.messages = []
            return
        self.timed_out = False
        self.messages = materialize_messages(snapshot.items)

    async def _emit_state(self) -> None:
        await self._emit("state", self.describe())

    async def _emit(self, kind: str, payload: Dict[str, Any]) -> None:
        if self._on_event is None:
            return
        try:
            await self._on_event(kind, payload)
        except Exception:
            logger.exception("View listener failed on %s event", kind)
