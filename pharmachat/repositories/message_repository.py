from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from pharmachat.models.message import MessageDocument
from pharmachat.repositories.conversation_repository import to_object_id


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING)])

    async def list_for_conversation(self, conversation_id: str, limit: int = 100) -> List[MessageDocument]:
        # unsorted on purpose, see reconciler
        items = await self.collection.find({"conversation_id": conversation_id}).limit(limit).to_list(length=limit)
        for it in items:
            it["_id"] = str(it.get("_id"))
        return items

    async def get(self, message_id: str) -> Optional[MessageDocument]:
        oid = to_object_id(message_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid})
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def list_page(
        self,
        conversation_id: str,
        limit: int = 50,
        before: Optional[MessageDocument] = None,
    ) -> List[MessageDocument]:
        """Newest ``limit`` messages older than ``before``, returned oldest first."""
        query: Dict[str, Any] = {"conversation_id": conversation_id}
        if before is not None:
            oid = to_object_id(before["_id"])
            query["$or"] = [
                {"created_at": {"$lt": before["created_at"]}},
                {"created_at": before["created_at"], "_id": {"$lt": oid}},
            ]
        cur = self.collection.find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(limit)
        items = await cur.to_list(length=limit)
        for it in items:
            it["_id"] = str(it.get("_id"))
        return list(reversed(items))

    async def insert(self, doc: Dict[str, Any], session=None) -> MessageDocument:
        result = await self.collection.insert_one(doc, session=session)
        doc["_id"] = str(result.inserted_id)
        return doc
