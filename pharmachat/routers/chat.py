import asyncio
import base64
import binascii
import json
import logging
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, Depends, File, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from pharmachat.config import get_settings
from pharmachat.core.exceptions import ChatError, DeliveryError, ValidationError
from pharmachat.core.session import OwnerSession
from pharmachat.schemas.chat import ConversationPublic, ImageUploaded, MarkRead, MessageCreate, MessagePublic
from pharmachat.services.chat_service import ChatService
from pharmachat.services.storage_service import StorageService, validate_image
from pharmachat.sync.delivery import ImageAttachment
from pharmachat.sync.feed import ChangeFeed, classify_store_error
from pharmachat.sync.view import ChatView
from pharmachat.utils.dependencies import get_change_feed, get_chat_service, get_storage_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["chat"])


@router.post("", status_code=201)
async def create_message(body: MessageCreate, service: ChatService = Depends(get_chat_service)):
    saved = await service.create_message(
        body.conversation_id,
        body.sender_id,
        body.sender_type,
        body.sender_name,
        content=body.content,
        image_url=body.image_url,
    )
    return MessagePublic.from_document(saved)


@router.patch("/mark-read")
async def mark_read(body: MarkRead, service: ChatService = Depends(get_chat_service)):
    changed = await service.mark_read(body.conversation_id, body.reader_id, body.reader_type)
    return {"updated": changed}


@router.post("/upload-image", response_model=ImageUploaded)
async def upload_image(image: UploadFile = File(...), storage: StorageService = Depends(get_storage_service)):
    max_bytes = get_settings().MAX_IMAGE_BYTES
    if image.size is not None:
        validate_image(image.content_type, image.size, max_bytes)
    content = await image.read()
    validate_image(image.content_type, len(content), max_bytes)
    try:
        url = await storage.upload_image(content, image.content_type, image.filename)
    except RuntimeError as exc:
        raise DeliveryError(DeliveryError.UPLOAD, str(exc), cause=exc) from exc
    return ImageUploaded(image_url=url)


def _decode_image(raw: Optional[Dict[str, Any]]) -> Optional[ImageAttachment]:
    if not raw:
        return None
    try:
        data = base64.b64decode(raw.get("data") or "", validate=True)
    except binascii.Error as exc:
        raise ValidationError("Image data is not valid base64") from exc
    return ImageAttachment(
        filename=raw.get("filename") or "image",
        content_type=raw.get("content_type") or "",
        data=data,
    )


def _public_items(kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    if kind == "conversations":
        payload = {**payload, "items": [ConversationPublic.from_document(it) for it in payload["items"]]}
    elif kind == "messages":
        payload = {**payload, "items": [MessagePublic.from_document(it) for it in payload["items"]]}
    return payload


@router.websocket("/ws/chat/{owner_id}")
async def chat_socket(
    websocket: WebSocket,
    owner_id: str,
    service: ChatService = Depends(get_chat_service),
    feed: ChangeFeed = Depends(get_change_feed),
    storage: StorageService = Depends(get_storage_service),
):
    pharmacy_id = websocket.query_params.get("pharmacy_id")
    session = OwnerSession.from_login({
        "owner": {"id": owner_id, "name": websocket.query_params.get("name", "")},
        "pharmacy": {"id": pharmacy_id} if pharmacy_id else None,
    })
    await websocket.accept()

    async def push(kind: str, payload: Dict[str, Any]) -> None:
        await websocket.send_json(jsonable_encoder({"type": kind, **_public_items(kind, payload)}))

    async def push_error(exc: ChatError) -> None:
        await push("error", {"code": type(exc).__name__, "detail": exc.message})

    async def run_send(text: Optional[str], image: Optional[ImageAttachment]) -> None:
        try:
            saved = await view.send(text=text, image=image)
        except ChatError as exc:
            await push_error(exc)
            return
        await push("sent", {"message_id": saved["_id"]})

    view = ChatView(session, feed, service, storage, on_event=push, max_image_bytes=get_settings().MAX_IMAGE_BYTES)
    sends: Set[asyncio.Task] = set()
    try:
        try:
            await view.start()
        except ChatError as exc:
            await push_error(exc)
        while True:
            raw = await websocket.receive_text()
            kind = None
            try:
                frame = json.loads(raw)
                kind = frame.get("type") if isinstance(frame, dict) else None
                if kind == "open" and frame.get("conversation_id"):
                    await view.open_conversation(str(frame["conversation_id"]))
                elif kind == "close":
                    await view.close_conversation()
                elif kind == "send":
                    image = _decode_image(frame.get("image"))
                    task = asyncio.create_task(run_send(frame.get("text"), image))
                    sends.add(task)
                    task.add_done_callback(sends.discard)
                else:
                    raise ValidationError("Invalid frame")
            except ValueError:
                await push_error(ValidationError("Invalid frame"))
            except ChatError as exc:
                await push_error(exc)
            except (PyMongoError, RedisError) as exc:
                logger.error("Store failure handling %s frame for owner %s: %s", kind, owner_id, exc)
                await push_error(classify_store_error(exc))
    except WebSocketDisconnect:
        logger.debug("Chat socket closed for owner %s", owner_id)
    finally:
        view.close()
        for task in list(sends):
            task.cancel()
        session.clear()
