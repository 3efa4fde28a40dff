"""Fixtures wiring the FastAPI app to in-memory repositories."""

import pytest
from httpx import ASGITransport, AsyncClient

from pharmachat.main import app
from pharmachat.utils.dependencies import get_change_feed, get_chat_service, get_storage_service


@pytest.fixture
def wired_app(chat_service, feed, storage):
    app.dependency_overrides[get_chat_service] = lambda: chat_service
    app.dependency_overrides[get_change_feed] = lambda: feed
    app.dependency_overrides[get_storage_service] = lambda: storage
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(wired_app):
    transport = ASGITransport(app=wired_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
