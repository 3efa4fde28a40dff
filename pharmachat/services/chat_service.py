import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from pharmachat.core.exceptions import DeliveryError, NotFoundError, ValidationError
from pharmachat.models.conversation import STATUS_ACTIVE, STATUS_ARCHIVED
from pharmachat.models.message import SENDER_CUSTOMER, SENDER_PHARMACY_OWNER
from pharmachat.repositories.conversation_repository import ConversationRepository
from pharmachat.repositories.message_repository import MessageRepository
from pharmachat.sync.reconciler import materialize_conversations, materialize_messages, unread_field
from pharmachat.utils.realtime_bus import conversations_channel, messages_channel


logger = logging.getLogger(__name__)

SENDER_TYPES = (SENDER_CUSTOMER, SENDER_PHARMACY_OWNER)
PREVIEW_LENGTH = 200


class ChatService:
    """
    Write surface of the chat store.

    Every mutation is one request here; afterwards an invalidation is published on
    the realtime bus so live subscriptions re-query.
    """

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        bus,
        client=None,
        use_transactions: bool = False,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._bus = bus
        self._client = client
        self._use_transactions = use_transactions and client is not None

    async def get_or_create_conversation(self, customer_id: str, pharmacy_owner_id: str) -> Dict[str, Any]:
        existing = await self._conversation_repo.find_for_pair(customer_id, pharmacy_owner_id)
        if existing:
            return existing
        convo = await self._conversation_repo.create(customer_id, pharmacy_owner_id)
        await self._notify(conversations_channel(pharmacy_owner_id), {"type": "conversation", "conversation_id": convo["_id"]})
        return convo

    async def get_conversation(self, conversation_id: str) -> Dict[str, Any]:
        convo = await self._conversation_repo.get(conversation_id)
        if not convo:
            raise NotFoundError("Conversation not found")
        return convo

    async def list_conversations(self, pharmacy_owner_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        items = await self._conversation_repo.list_active_for_owner(pharmacy_owner_id, limit=limit)
        return materialize_conversations(items)

    async def list_messages(
        self,
        conversation_id: str,
        limit: int = 50,
        last_message_id: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """
        One page of history, oldest first, plus the cursor for the page before it.

        Without ``last_message_id`` the newest page is returned. The cursor is the id
        of the oldest message in the page; it is ``None`` when the page came back short.
        """
        await self.get_conversation(conversation_id)
        before = None
        if last_message_id:
            before = await self._message_repo.get(last_message_id)
            if not before or before.get("conversation_id") != conversation_id:
                raise ValidationError("Unknown message cursor")
        items = await self._message_repo.list_page(conversation_id, limit=limit, before=before)
        next_cursor = str(items[0]["_id"]) if len(items) == limit else None
        return materialize_messages(items), next_cursor

    async def create_message(
        self,
        conversation_id: str,
        sender_id: str,
        sender_type: str,
        sender_name: str,
        content: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        text = (content or "").strip()
        if not text and not image_url:
            raise ValidationError("Message must have text or an image")
        if sender_type not in SENDER_TYPES:
            raise ValidationError(f"Unknown sender type: {sender_type}")
        convo = await self.get_conversation(conversation_id)
        if convo.get("status") != STATUS_ACTIVE:
            raise ValidationError("Conversation is archived")

        now = datetime.now(timezone.utc)
        doc: Dict[str, Any] = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "sender_name": sender_name,
            "sender_type": sender_type,
            "content": text or None,
            "image_url": image_url,
            "created_at": now,
        }
        # the counterpart's counter goes up
        counterpart = SENDER_PHARMACY_OWNER if sender_type == SENDER_CUSTOMER else SENDER_CUSTOMER
        summary = {
            "last_message": text[:PREVIEW_LENGTH] or None,
            "last_message_type": "image" if image_url else "text",
            "last_message_at": now,
            "unread_field": unread_field(counterpart),
        }

        try:
            if self._use_transactions:
                async with await self._client.start_session() as session:
                    async with session.start_transaction():
                        saved = await self._write_message(doc, conversation_id, summary, session=session)
            else:
                saved = await self._write_message(doc, conversation_id, summary)
        except PyMongoError as exc:
            logger.error("Message write to %s failed: %s", conversation_id, exc)
            raise DeliveryError(DeliveryError.CREATE, cause=exc) from exc

        event = {"type": "message", "conversation_id": conversation_id, "message_id": saved["_id"]}
        await self._notify(messages_channel(conversation_id), event)
        await self._notify(conversations_channel(convo["pharmacy_owner_id"]), event)
        return saved

    async def _write_message(self, doc: Dict[str, Any], conversation_id: str, summary: Dict[str, Any], session=None) -> Dict[str, Any]:
        saved = await self._message_repo.insert(doc, session=session)
        await self._conversation_repo.apply_new_message(conversation_id, session=session, **summary)
        return saved

    async def mark_read(self, conversation_id: str, reader_id: str, reader_type: str) -> bool:
        convo = await self.get_conversation(conversation_id)
        if reader_type == SENDER_PHARMACY_OWNER:
            party_id = convo.get("pharmacy_owner_id")
        elif reader_type == SENDER_CUSTOMER:
            party_id = convo.get("customer_id")
        else:
            raise ValidationError(f"Unknown reader type: {reader_type}")
        if party_id != reader_id:
            raise ValidationError("Reader is not a party of this conversation")

        changed = await self._conversation_repo.reset_unread(conversation_id, unread_field(reader_type))
        if changed:
            await self._notify(
                conversations_channel(convo["pharmacy_owner_id"]),
                {"type": "read", "conversation_id": conversation_id, "reader_type": reader_type},
            )
        return changed

    async def archive_conversation(self, conversation_id: str) -> bool:
        convo = await self.get_conversation(conversation_id)
        changed = await self._conversation_repo.set_status(conversation_id, STATUS_ARCHIVED)
        if changed:
            await self._notify(
                conversations_channel(convo["pharmacy_owner_id"]),
                {"type": "archived", "conversation_id": conversation_id},
            )
        return changed

    async def _notify(self, channel: str, event: Dict[str, Any]) -> None:
        # the write is already durable; a lost invalidation only delays the next snapshot
        try:
            await self._bus.publish(channel, json.dumps(event))
        except RedisError:
            logger.exception("Failed to publish change on %s", channel)
