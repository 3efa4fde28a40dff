from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from pharmachat.models.conversation import STATUS_ACTIVE, ConversationDocument


def to_object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def _normalize(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc["_id"] = str(doc.get("_id"))
    return doc


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        # single-field only; the live queries must work without composite indexes
        await self.collection.create_index([("pharmacy_owner_id", ASCENDING)])
        await self.collection.create_index([("customer_id", ASCENDING)])

    async def list_active_for_owner(self, pharmacy_owner_id: str, limit: int = 100) -> List[ConversationDocument]:
        # filter only, no sort: ordering happens client-side
        query = {"pharmacy_owner_id": pharmacy_owner_id, "status": STATUS_ACTIVE}
        items = await self.collection.find(query).limit(limit).to_list(length=limit)
        return [_normalize(it) for it in items]

    async def get(self, conversation_id: str) -> Optional[ConversationDocument]:
        oid = to_object_id(conversation_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid})
        return _normalize(doc) if doc else None

    async def find_for_pair(self, customer_id: str, pharmacy_owner_id: str) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one({"customer_id": customer_id, "pharmacy_owner_id": pharmacy_owner_id})
        return _normalize(doc) if doc else None

    async def create(self, customer_id: str, pharmacy_owner_id: str) -> ConversationDocument:
        doc: Dict[str, Any] = {
            "customer_id": customer_id,
            "pharmacy_owner_id": pharmacy_owner_id,
            "status": STATUS_ACTIVE,
            "last_message": None,
            "last_message_type": None,
            "last_message_at": None,
            "unread_count_pharmacy_owner": 0,
            "unread_count_customer": 0,
            "created_at": datetime.now(timezone.utc),
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def apply_new_message(
        self,
        conversation_id: str,
        last_message: Optional[str],
        last_message_type: str,
        last_message_at: datetime,
        unread_field: str,
        session=None,
    ) -> None:
        await self.collection.update_one(
            {"_id": ObjectId(conversation_id)},
            {
                "$set": {
                    "last_message": last_message,
                    "last_message_type": last_message_type,
                    "last_message_at": last_message_at,
                },
                "$inc": {unread_field: 1},
            },
            session=session,
        )

    async def reset_unread(self, conversation_id: str, unread_field: str) -> bool:
        result = await self.collection.update_one(
            {"_id": ObjectId(conversation_id)},
            {"$set": {unread_field: 0}},
        )
        return bool(result.modified_count)

    async def set_status(self, conversation_id: str, status: str) -> bool:
        result = await self.collection.update_one(
            {"_id": ObjectId(conversation_id)},
            {"$set": {"status": status}},
        )
        return bool(result.modified_count)
