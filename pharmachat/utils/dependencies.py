from fastapi import Depends

from pharmachat.config import get_settings
from pharmachat.database.connection import mongo_db_dependency
from pharmachat.repositories.conversation_repository import ConversationRepository
from pharmachat.repositories.message_repository import MessageRepository
from pharmachat.services.chat_service import ChatService
from pharmachat.services.storage_service import StorageService
from pharmachat.sync.feed import ChangeFeed
from pharmachat.utils.realtime_bus import get_bus


async def bus_dependency():
    return await get_bus()


def get_chat_service(db=Depends(mongo_db_dependency), bus=Depends(bus_dependency)) -> ChatService:
    settings = get_settings()
    return ChatService(
        MessageRepository(db),
        ConversationRepository(db),
        bus,
        client=db.client,
        use_transactions=settings.MONGODB_TRANSACTIONS,
    )


def get_change_feed(db=Depends(mongo_db_dependency), bus=Depends(bus_dependency)) -> ChangeFeed:
    settings = get_settings()
    return ChangeFeed(
        ConversationRepository(db),
        MessageRepository(db),
        bus,
        conversation_limit=settings.CONVERSATION_LIST_LIMIT,
        message_limit=settings.MESSAGE_LIST_LIMIT,
        watchdog_seconds=settings.SUBSCRIPTION_WATCHDOG_SECONDS,
    )


def get_storage_service() -> StorageService:
    settings = get_settings()
    return StorageService(settings.UPLOAD_DIR, settings.API_BASE_URL)
