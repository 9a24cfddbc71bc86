"""Cross-entity bridge between the chat-message engine and the favorites engine.

A favorite can be created for a message that hasn't reached the server
yet; its queued ``add`` then waits. When the message engine announces
``message-synced`` on the shared bus, the bridge hands the new remote id to
the favorites engine and schedules a flush shortly after.
"""

import logging
from collections import OrderedDict
from typing import Callable, Optional

from favsync.engine import MESSAGE_SETTLE_DELAY, FavoritesEngine
from favsync.events import EventBus, EventType, MessageSynced

logger = logging.getLogger(__name__)

MAX_INDEXED_MESSAGES = 1000


class MessageIdIndex:
    """Local-to-remote message id map fed by ``message-synced`` events.

    Serves as the favorites engine's MessageLookup when the message engine
    doesn't provide its own. Holds at most ``max_entries`` ids; the oldest
    are evicted first.
    """

    def __init__(
        self, bus: Optional[EventBus] = None, max_entries: int = MAX_INDEXED_MESSAGES
    ):
        self.max_entries = max_entries
        self._remote_ids: "OrderedDict[str, str]" = OrderedDict()
        self._unsubscribe: Optional[Callable[[], None]] = None
        if bus is not None:
            self._unsubscribe = bus.subscribe(self._on_message_synced, [EventType.MESSAGE_SYNCED])

    def register(self, local_id: str, remote_id: str) -> None:
        self._remote_ids[local_id] = remote_id
        self._remote_ids.move_to_end(local_id)
        while len(self._remote_ids) > self.max_entries:
            self._remote_ids.popitem(last=False)

    def __len__(self) -> int:
        return len(self._remote_ids)

    def get_remote_message_id(self, message_id: str) -> Optional[str]:
        return self._remote_ids.get(message_id)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_message_synced(self, event: MessageSynced) -> None:
        if event.local_id and event.remote_id:
            self.register(event.local_id, event.remote_id)


class MessageSyncBridge:
    """Unblock queued favorites when their target message syncs.

    Args:
        engine: The favorites engine to notify.
        bus: Bus on which the message engine publishes ``message-synced``.
        settle_delay: Seconds to wait before flushing, letting related writes land.
    """

    def __init__(
        self,
        engine: FavoritesEngine,
        bus: EventBus,
        settle_delay: float = MESSAGE_SETTLE_DELAY,
    ):
        self.engine = engine
        self.bus = bus
        self.settle_delay = settle_delay
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.bus.subscribe(self.handle, [EventType.MESSAGE_SYNCED])

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def handle(self, event: MessageSynced) -> bool:
        """Process one ``message-synced`` event. Returns True if a favorite was waiting."""
        if not event.local_id or not self.engine.has_pending_add(event.local_id):
            return False

        logger.info(
            f"Message synced, triggering favorite sync: {event.local_id} -> {event.remote_id}"
        )
        if event.remote_id:
            self.engine.backfill_remote_message_id(event.local_id, event.remote_id)
        self.engine.request_sync(self.settle_delay)
        return True
