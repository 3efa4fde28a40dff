from datetime import datetime
from typing import Literal, Optional, TypedDict


ConversationStatus = Literal["active", "archived"]
LastMessageType = Literal["text", "image"]

STATUS_ACTIVE = "active"
STATUS_ARCHIVED = "archived"


class ConversationDocument(TypedDict, total=False):
    _id: str
    customer_id: str
    pharmacy_owner_id: str
    status: ConversationStatus
    # denormalized summary of the latest message
    last_message: Optional[str]
    last_message_type: Optional[LastMessageType]
    last_message_at: Optional[datetime]
    # per-party unread counters, never negative
    unread_count_pharmacy_owner: int
    unread_count_customer: int
    created_at: datetime
