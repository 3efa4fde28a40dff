from typing import Optional

from fastapi import APIRouter, Depends, Query

from pharmachat.schemas.chat import ConversationCreate, ConversationPublic, MessagePublic
from pharmachat.services.chat_service import ChatService
from pharmachat.utils.dependencies import get_chat_service


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.post("", status_code=201)
async def get_or_create_conversation(body: ConversationCreate, service: ChatService = Depends(get_chat_service)):
    convo = await service.get_or_create_conversation(body.customer_id, body.pharmacy_owner_id)
    return ConversationPublic.from_document(convo)


@router.get("/pharmacy-owner/{owner_id}")
async def list_conversations(owner_id: str, limit: int = Query(100, ge=1, le=100), service: ChatService = Depends(get_chat_service)):
    items = await service.list_conversations(owner_id, limit=limit)
    return {"items": [ConversationPublic.from_document(it) for it in items]}


@router.get("/{conversation_id}")
async def get_conversation(conversation_id: str, service: ChatService = Depends(get_chat_service)):
    convo = await service.get_conversation(conversation_id)
    return ConversationPublic.from_document(convo)


@router.get("/{conversation_id}/messages")
async def list_messages(
    conversation_id: str,
    limit: int = Query(50, ge=1, le=100),
    last_message_id: Optional[str] = Query(None),
    service: ChatService = Depends(get_chat_service),
):
    items, next_cursor = await service.list_messages(conversation_id, limit=limit, last_message_id=last_message_id)
    return {"items": [MessagePublic.from_document(it) for it in items], "next_cursor": next_cursor}


@router.patch("/{conversation_id}/archive")
async def archive_conversation(conversation_id: str, service: ChatService = Depends(get_chat_service)):
    changed = await service.archive_conversation(conversation_id)
    return {"archived": changed}
