import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pymongo.errors import PyMongoError

from pharmachat.config import get_settings
from pharmachat.core.exceptions import (
    ChatError,
    ComposerBusyError,
    DeliveryError,
    NotFoundError,
    PayloadTooLargeError,
    UnsupportedMediaError,
    ValidationError,
)
from pharmachat.database.connection import close_mongo_connection, connect_to_mongo, get_database
from pharmachat.repositories.conversation_repository import ConversationRepository
from pharmachat.repositories.message_repository import MessageRepository
from pharmachat.routers.chat import router as chat_router
from pharmachat.routers.conversations import router as conversations_router
from pharmachat.utils.logger import init_app_logger
from pharmachat.utils.realtime_bus import close_bus, get_bus


logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):

    init_app_logger(settings)
    await connect_to_mongo()
    db = get_database()
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    await get_bus()
    if not settings.MONGODB_TRANSACTIONS:
        logger.warning("MONGODB_TRANSACTIONS is off: message insert and conversation summary update are not atomic")
    try:
        yield
    finally:
        await close_bus()
        await close_mongo_connection()


app = FastAPI(title="Pharmacy Chat", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False), name="uploads")

app.include_router(conversations_router)
app.include_router(chat_router)


ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    ComposerBusyError: 409,
    PayloadTooLargeError: 413,
    UnsupportedMediaError: 415,
    DeliveryError: 502,
}


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    status_code = ERROR_STATUS.get(type(exc), 500)
    if status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.error("Store failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": "Chat store is unavailable. Please try again."})


@app.get("/")
async def root():
    return {"message": "Pharmacy chat is running"}
