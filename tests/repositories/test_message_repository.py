"""Tests for MessageRepository against a mocked motor collection."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from bson import ObjectId

from pharmachat.repositories.message_repository import MessageRepository


def _repo():
    collection = MagicMock()
    cursor = MagicMock()
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=[{"_id": ObjectId(), "conversation_id": "c1"}])
    collection.find.return_value = cursor
    collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id=ObjectId()))
    db = MagicMock()
    db.__getitem__.return_value = collection
    return MessageRepository(db), collection


class TestMessageRepository:
    """SUT: MessageRepository"""

    async def test_list_is_unsorted_and_capped(self):
        repo, collection = _repo()
        items = await repo.list_for_conversation("c1", limit=100)
        collection.find.assert_called_once_with({"conversation_id": "c1"})
        collection.find.return_value.limit.assert_called_once_with(100)
        assert not collection.find.return_value.sort.called
        assert isinstance(items[0]["_id"], str)

    async def test_insert_passes_session(self):
        repo, collection = _repo()
        saved = await repo.insert({"conversation_id": "c1", "content": "hi"}, session="s")
        assert collection.insert_one.await_args.kwargs["session"] == "s"
        assert isinstance(saved["_id"], str)

    async def test_page_sorts_newest_first_and_returns_oldest_first(self):
        repo, collection = _repo()
        older, newer = ObjectId(), ObjectId()
        cursor = collection.find.return_value
        cursor.sort.return_value = cursor
        cursor.to_list = AsyncMock(return_value=[{"_id": newer}, {"_id": older}])
        items = await repo.list_page("c1", limit=2)
        collection.find.assert_called_once_with({"conversation_id": "c1"})
        cursor.sort.assert_called_once_with([("created_at", -1), ("_id", -1)])
        assert [it["_id"] for it in items] == [str(older), str(newer)]

    async def test_page_before_anchor(self):
        repo, collection = _repo()
        cursor = collection.find.return_value
        cursor.sort.return_value = cursor
        anchor_id = ObjectId()
        stamp = datetime(2025, 1, 1, tzinfo=timezone.utc)
        await repo.list_page("c1", limit=50, before={"_id": str(anchor_id), "created_at": stamp})
        query = collection.find.call_args.args[0]
        assert query["$or"] == [
            {"created_at": {"$lt": stamp}},
            {"created_at": stamp, "_id": {"$lt": anchor_id}},
        ]

    async def test_get_with_malformed_id(self):
        repo, collection = _repo()
        collection.find_one = AsyncMock()
        assert await repo.get("not-an-object-id") is None
        collection.find_one.assert_not_awaited()
