"""Application context for favsync.

``create_context`` builds every component once at startup and wires them
together; whatever owns the user session holds on to the returned
SyncContext instead of reaching for module-level state.

Usage::

    async with create_context(load_config()) as ctx:
        ctx.engine.add("m1", "hello", "user", chat_id="c1")
        ctx.bus.emit(MessageSynced(local_id="m1", remote_id="r1"))
"""

import logging
from dataclasses import dataclass
from typing import Optional

from favsync.bridge import MessageIdIndex, MessageSyncBridge
from favsync.config import FavSyncConfig
from favsync.engine import FavoritesEngine
from favsync.events import EventBus
from favsync.protocols import FavoritesAPI, KeyValueStore, MessageLookup
from favsync.remote import FavoritesClient
from favsync.scheduler import SyncScheduler
from favsync.storage import DurableStore, SQLiteKeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class SyncContext:
    """All favsync components for one application session."""

    config: FavSyncConfig
    bus: EventBus
    store: DurableStore
    engine: FavoritesEngine
    scheduler: SyncScheduler
    bridge: MessageSyncBridge
    client: Optional[FavoritesAPI] = None
    messages: Optional[MessageLookup] = None

    async def start(self) -> None:
        """Start background sync and kick off a first flush."""
        self.bridge.start()
        self.scheduler.start()
        self.engine.request_sync()

    async def close(self) -> None:
        """Stop background work, persist, and release the HTTP client."""
        self.bridge.stop()
        await self.scheduler.stop()
        if isinstance(self.messages, MessageIdIndex):
            self.messages.close()
        aclose = getattr(self.client, "aclose", None)
        if aclose is not None:
            await aclose()

    def set_user(self, user_id: Optional[str]) -> None:
        """Switch the engine to another user (login/logout)."""
        if user_id is None:
            self.engine.clear_current_user()
        else:
            self.engine.set_user_id(user_id)

    async def __aenter__(self) -> "SyncContext":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def create_context(
    config: Optional[FavSyncConfig] = None,
    *,
    kv: Optional[KeyValueStore] = None,
    client: Optional[FavoritesAPI] = None,
    messages: Optional[MessageLookup] = None,
    bus: Optional[EventBus] = None,
) -> SyncContext:
    """Wire up a SyncContext.

    Args:
        config: Settings; defaults to ``FavSyncConfig()``.
        kv: Storage backend; defaults to SQLite at ``config.db_path``.
        client: Remote API; defaults to an httpx client when a backend URL is set.
        messages: Message lookup; defaults to a MessageIdIndex on the bus.
        bus: Event bus shared with the message engine.
    """
    config = config or FavSyncConfig()
    bus = bus or EventBus()
    if kv is None:
        kv = SQLiteKeyValueStore(config.db_path)
    if client is None and config.remote_enabled:
        client = FavoritesClient(
            config.backend_url,
            cookies=config.cookies,
            timeout=config.request_timeout,
        )
    if messages is None:
        messages = MessageIdIndex(bus)

    store = DurableStore(kv)
    engine = FavoritesEngine(
        store,
        client=client,
        bus=bus,
        message_lookup=messages,
        user_id=config.user_id,
        max_retries=config.max_retries,
        initial_retry_delay_ms=config.initial_retry_delay_ms,
        max_retry_delay_ms=config.max_retry_delay_ms,
    )
    scheduler = SyncScheduler(
        engine.sync_now,
        engine.persist,
        sync_interval=config.sync_interval,
        persist_interval=config.persist_interval,
    )
    engine.attach_scheduler(scheduler)
    bridge = MessageSyncBridge(engine, bus, settle_delay=config.message_settle_delay)

    if client is None:
        logger.info("No backend configured, favorites stay local")

    return SyncContext(
        config=config,
        bus=bus,
        store=store,
        engine=engine,
        scheduler=scheduler,
        bridge=bridge,
        client=client,
        messages=messages,
    )
