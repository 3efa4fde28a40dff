from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


SenderTypeField = Literal["customer", "pharmacy-owner"]


class ConversationCreate(BaseModel):

    customer_id: str = Field(min_length=1)
    pharmacy_owner_id: str = Field(min_length=1)


class ConversationPublic(BaseModel):

    id: str
    customer_id: str
    pharmacy_owner_id: str
    status: Literal["active", "archived"]
    last_message: Optional[str] = None
    last_message_type: Optional[Literal["text", "image"]] = None
    last_message_at: Optional[datetime] = None
    unread_count_pharmacy_owner: int = 0
    unread_count_customer: int = 0

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ConversationPublic":
        return cls(id=str(doc["_id"]), **{k: v for k, v in doc.items() if k in cls.model_fields and k != "id"})


class MessageCreate(BaseModel):

    conversation_id: str
    sender_id: str
    sender_type: SenderTypeField
    sender_name: str = ""
    content: Optional[str] = None
    image_url: Optional[str] = None


class MessagePublic(BaseModel):

    id: str
    conversation_id: str
    sender_id: str
    sender_name: str = ""
    sender_type: SenderTypeField
    content: Optional[str] = None
    image_url: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "MessagePublic":
        return cls(id=str(doc["_id"]), **{k: v for k, v in doc.items() if k in cls.model_fields and k != "id"})


class MarkRead(BaseModel):

    conversation_id: str
    reader_id: str
    reader_type: SenderTypeField = "pharmacy-owner"


class ImageUploaded(BaseModel):

    image_url: str
