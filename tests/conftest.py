"""
Pytest fixtures and test configuration for favsync tests.
"""

import logging
from unittest.mock import AsyncMock

import pytest

from favsync.bridge import MessageIdIndex
from favsync.engine import FavoritesEngine
from favsync.events import EventBus
from favsync.remote import FavoritesClient
from favsync.storage import DurableStore, MemoryKeyValueStore


class FakeClock:
    """Controllable epoch-millisecond clock."""

    def __init__(self, now_ms: int = 1_700_000_000_000):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep config, database and log files out of the real home directory."""
    home = tmp_path / "favsync-home"
    monkeypatch.setenv("FAVSYNC_DATA_DIR", str(home))
    for name in ("FAVSYNC_BACKEND_URL", "FAVSYNC_USER_ID", "FAVSYNC_SESSION_COOKIE"):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv):
    return DurableStore(kv)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_client():
    """Remote favorites API that accepts every call."""
    client = AsyncMock(spec=FavoritesClient)
    client.add_favorite.return_value = "remote-fav-1"
    client.remove_favorite.return_value = None
    client.list_favorites.return_value = []
    return client


@pytest.fixture
def messages():
    """Message lookup with nothing synced yet."""
    return MessageIdIndex()


@pytest.fixture
def engine(store, mock_client, bus, messages, clock):
    """Engine for user-1 with a mock remote client and a fake clock."""
    return FavoritesEngine(
        store,
        client=mock_client,
        bus=bus,
        message_lookup=messages,
        user_id="user-1",
        now_ms=clock,
    )


@pytest.fixture
def local_engine(store, bus):
    """Engine with no remote client configured."""
    return FavoritesEngine(store, bus=bus, user_id="user-1")


def remote_record(
    remote_id: str,
    message_id: str,
    content: str,
    role: str = "assistant",
    chat_id: str = "chat-remote-1",
    created_at: str = "2024-05-01T12:00:00+00:00",
) -> dict:
    """A remote favorite row in the joined ``chat_messages``/``chats`` shape."""
    return {
        "id": remote_id,
        "message_id": message_id,
        "created_at": created_at,
        "chat_messages": {
            "id": message_id,
            "content": content,
            "role": role,
            "created_at": "2024-05-01T11:59:00+00:00",
            "chats": {"id": chat_id, "title": "Remote chat", "mode": "chat"},
        },
    }


@pytest.fixture
def make_remote_record():
    return remote_record


@pytest.fixture(autouse=True)
def reset_favsync_logger():
    """Drop handlers that setup_favsync_logging attached during a test."""
    logger = logging.getLogger("favsync")
    saved_level = logger.level
    yield
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(saved_level)
