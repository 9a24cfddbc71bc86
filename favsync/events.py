"""Typed event bus shared by the favorites engine and the message engine.

Every event is a frozen dataclass with a ``kind`` class attribute. Listeners
subscribe to all events or to a set of kinds and receive the event object.
Emission is synchronous; a failing listener is logged and skipped.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, Iterable, List, Optional

from favsync.types import FavoriteEntity, SyncResult

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event kinds emitted or consumed by the favorites engine."""

    FAVORITE_ADDED = "favorite-added"
    FAVORITE_REMOVED = "favorite-removed"
    FAVORITE_SYNCED = "favorite-synced"
    FAVORITE_SYNC_FAILED = "favorite-sync-failed"
    SYNC_STARTED = "sync-started"
    SYNC_COMPLETED = "sync-completed"
    DATA_LOADED = "data-loaded"
    REMOTE_MERGED = "remote-merged"

    # Emitted by the chat-message engine
    MESSAGE_SYNCED = "message-synced"


@dataclass(frozen=True)
class Event:
    """Base class for all events."""

    kind: ClassVar[EventType]


@dataclass(frozen=True)
class FavoriteAdded(Event):
    kind: ClassVar[EventType] = EventType.FAVORITE_ADDED
    favorite: FavoriteEntity


@dataclass(frozen=True)
class FavoriteRemoved(Event):
    kind: ClassVar[EventType] = EventType.FAVORITE_REMOVED
    local_id: str
    message_id: str


@dataclass(frozen=True)
class FavoriteSynced(Event):
    kind: ClassVar[EventType] = EventType.FAVORITE_SYNCED
    local_id: str
    remote_id: Optional[str]


@dataclass(frozen=True)
class FavoriteSyncFailed(Event):
    kind: ClassVar[EventType] = EventType.FAVORITE_SYNC_FAILED
    local_id: str
    error: str


@dataclass(frozen=True)
class SyncStarted(Event):
    kind: ClassVar[EventType] = EventType.SYNC_STARTED
    pending: int = 0


@dataclass(frozen=True)
class SyncCompleted(Event):
    kind: ClassVar[EventType] = EventType.SYNC_COMPLETED
    result: SyncResult = field(default_factory=SyncResult)


@dataclass(frozen=True)
class DataLoaded(Event):
    kind: ClassVar[EventType] = EventType.DATA_LOADED
    count: int = 0


@dataclass(frozen=True)
class RemoteMerged(Event):
    kind: ClassVar[EventType] = EventType.REMOTE_MERGED
    added: int = 0
    updated: int = 0
    skipped: int = 0


@dataclass(frozen=True)
class MessageSynced(Event):
    kind: ClassVar[EventType] = EventType.MESSAGE_SYNCED
    local_id: str
    remote_id: str


Listener = Callable[[Any], None]


class EventBus:
    """Central event bus for publishing and subscribing to events."""

    def __init__(self):
        # None holds listeners for every kind
        self._subscribers: Dict[Optional[EventType], List[Listener]] = {}

    def subscribe(
        self, callback: Listener, kinds: Optional[Iterable[EventType]] = None
    ) -> Callable[[], None]:
        """Register a listener and return a function that removes it.

        Args:
            callback: Called with the event object.
            kinds: Event kinds to receive; all kinds when omitted.
        """
        keys: List[Optional[EventType]] = list(kinds) if kinds is not None else [None]
        for key in keys:
            self._subscribers.setdefault(key, []).append(callback)
        logger.debug(f"Added subscriber for {[k.value if k else '*' for k in keys]}")

        def unsubscribe() -> None:
            for key in keys:
                listeners = self._subscribers.get(key)
                if listeners and callback in listeners:
                    listeners.remove(callback)
                    if not listeners:
                        del self._subscribers[key]

        return unsubscribe

    def emit(self, event: Event) -> None:
        """Deliver an event to kind-specific listeners, then catch-all listeners."""
        listeners = list(self._subscribers.get(event.kind, [])) + list(
            self._subscribers.get(None, [])
        )
        for callback in listeners:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in event listener for {event.kind.value}: {e}", exc_info=True)

    def listener_count(self, kind: Optional[EventType] = None) -> int:
        return len(self._subscribers.get(kind, []))
