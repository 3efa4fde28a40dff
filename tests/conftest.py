"""Shared fixtures: in-memory repositories on an in-process bus."""

import pytest

from pharmachat.services.chat_service import ChatService
from pharmachat.services.storage_service import StorageService
from pharmachat.sync.feed import ChangeFeed
from pharmachat.utils.realtime_bus import LocalBus
from tests.fakes import FakeConversationRepository, FakeMessageRepository, FakeUploader


WATCHDOG_SECONDS = 0.2


@pytest.fixture
def bus():
    return LocalBus()


@pytest.fixture
def conversation_repo():
    return FakeConversationRepository()


@pytest.fixture
def message_repo():
    return FakeMessageRepository()


@pytest.fixture
def chat_service(message_repo, conversation_repo, bus):
    return ChatService(message_repo, conversation_repo, bus)


@pytest.fixture
def feed(conversation_repo, message_repo, bus):
    return ChangeFeed(conversation_repo, message_repo, bus, watchdog_seconds=WATCHDOG_SECONDS)


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def storage(tmp_path):
    return StorageService(str(tmp_path / "uploads"), "http://test")
