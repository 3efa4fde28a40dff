"""
Client-side ordering and read-state for live snapshots.

The live queries are filter-only so the store never needs a composite index;
every snapshot is therefore re-sorted here before anyone renders it.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from pharmachat.core.exceptions import ReadMarkError
from pharmachat.models.message import SENDER_PHARMACY_OWNER


logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def as_timestamp(value: Any) -> datetime:
    """Coerce a stored timestamp to an aware datetime. Missing values sort as the epoch."""
    if value is None:
        return EPOCH
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return EPOCH
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        # epoch milliseconds
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    return EPOCH


def materialize_conversations(items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # most recent first; sorted() keeps snapshot order for ties, reverse included
    return sorted(items, key=lambda c: as_timestamp(c.get("last_message_at")), reverse=True)


def materialize_messages(items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # oldest first; not-yet-stamped writes land at the start until the next snapshot
    return sorted(items, key=lambda m: as_timestamp(m.get("created_at")))


def unread_field(reader_type: str) -> str:
    if reader_type == SENDER_PHARMACY_OWNER:
        return "unread_count_pharmacy_owner"
    return "unread_count_customer"


def needs_read_mark(conversation: Dict[str, Any], reader_type: str = SENDER_PHARMACY_OWNER) -> bool:
    return (conversation.get(unread_field(reader_type)) or 0) > 0


def preview_text(conversation: Dict[str, Any]) -> str:
    if conversation.get("last_message_type") == "image":
        return "📷 Image"
    return conversation.get("last_message") or "No messages yet"


class ReadMarker:
    """
    Issues the read-mark for a conversation that is being opened.

    Fire-and-forget: the request runs as its own task so message rendering never
    waits on it, and a failure is only logged.
    """

    def __init__(self, writer, reader_id: str, reader_type: str = SENDER_PHARMACY_OWNER) -> None:
        self._writer = writer
        self._reader_id = reader_id
        self._reader_type = reader_type
        self._pending: Set[asyncio.Task] = set()

    def maybe_mark(self, conversation: Dict[str, Any]) -> Optional[asyncio.Task]:
        if not needs_read_mark(conversation, self._reader_type):
            return None
        task = asyncio.create_task(self._mark(str(conversation["_id"])))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _mark(self, conversation_id: str) -> None:
        try:
            await self._writer.mark_read(conversation_id, self._reader_id, self._reader_type)
        except Exception as exc:
            error = ReadMarkError(f"Read-mark failed for conversation {conversation_id}: {exc}")
            logger.warning("%s", error.message)
