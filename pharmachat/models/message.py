from datetime import datetime
from typing import Literal, Optional, TypedDict


SenderType = Literal["customer", "pharmacy-owner"]

SENDER_CUSTOMER = "customer"
SENDER_PHARMACY_OWNER = "pharmacy-owner"


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    sender_name: str
    sender_type: SenderType
    content: Optional[str]
    image_url: Optional[str]
    # server-assigned; missing until the write lands
    created_at: Optional[datetime]
