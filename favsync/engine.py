"""Local-first favorites engine.

FavoritesEngine owns the entity cache and the sync queue for the active
user. ``add`` and ``remove`` apply locally and persist right away; delivery
to the remote service happens later in ``sync_now``, one queue item at a
time, with exponential backoff on failure.

Queue items are keyed by the favorite's local id, so an entity has at most
one pending mutation and a ``remove`` supersedes a pending ``add``.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from favsync.events import (
    DataLoaded,
    Event,
    EventBus,
    FavoriteAdded,
    FavoriteRemoved,
    FavoriteSynced,
    FavoriteSyncFailed,
    RemoteMerged,
    SyncCompleted,
    SyncStarted,
)
from favsync.protocols import FavoritesAPI, MessageLookup
from favsync.reconcile import deduplicate, merge_remote
from favsync.storage.durable import DurableStore
from favsync.types import (
    FavoriteEntity,
    MergeResult,
    QueueItemType,
    Role,
    SyncQueueItem,
    SyncResult,
    SyncStatus,
    epoch_ms,
    new_local_id,
    timestamp_key,
    utc_now,
)

logger = logging.getLogger(__name__)

MAX_RETRIES = 10
INITIAL_RETRY_DELAY_MS = 2000
MAX_RETRY_DELAY_MS = 120000
MESSAGE_SETTLE_DELAY = 0.5  # seconds


def compute_retry_delay_ms(
    retry_count: int,
    initial_delay_ms: int = INITIAL_RETRY_DELAY_MS,
    max_delay_ms: int = MAX_RETRY_DELAY_MS,
) -> int:
    """Backoff before the next attempt after ``retry_count`` failures."""
    return min(initial_delay_ms * (2**retry_count), max_delay_ms)


class FavoritesEngine:
    """Entity cache, sync queue and flush logic for one user's favorites.

    Args:
        store: Durable store for both tables.
        client: Remote favorites service; without one, flushes are no-ops.
        bus: Event bus for engine events; a private bus is created if omitted.
        message_lookup: Resolves remote ids of local chat messages.
        user_id: Active user, or None for anonymous state.
        now_ms: Clock in epoch milliseconds, used for backoff bookkeeping.
    """

    def __init__(
        self,
        store: DurableStore,
        client: Optional[FavoritesAPI] = None,
        bus: Optional[EventBus] = None,
        message_lookup: Optional[MessageLookup] = None,
        *,
        user_id: Optional[str] = None,
        max_retries: int = MAX_RETRIES,
        initial_retry_delay_ms: int = INITIAL_RETRY_DELAY_MS,
        max_retry_delay_ms: int = MAX_RETRY_DELAY_MS,
        now_ms=epoch_ms,
    ):
        self.store = store
        self.client = client
        self.bus = bus or EventBus()
        self.message_lookup = message_lookup
        self.user_id = user_id
        self.max_retries = max_retries
        self.initial_retry_delay_ms = initial_retry_delay_ms
        self.max_retry_delay_ms = max_retry_delay_ms
        self._now_ms = now_ms

        self._favorites: Dict[str, FavoriteEntity] = {}
        self._queue: Dict[str, SyncQueueItem] = {}
        self._scheduler = None
        self.is_syncing = False

        self.load()

    # === Wiring ===

    def attach_scheduler(self, scheduler) -> None:
        """Route sync requests through ``scheduler.request_flush``."""
        self._scheduler = scheduler

    def request_sync(self, delay: float = 0.0) -> bool:
        """Ask for a background flush. Returns False if nothing can run it."""
        if self._scheduler is None:
            logger.debug("No scheduler attached, sync request left for next explicit flush")
            return False
        return self._scheduler.request_flush(delay)

    def _emit(self, event: Event) -> None:
        self.bus.emit(event)

    # === Persistence ===

    def load(self) -> None:
        """Replace in-memory state with the active user's persisted state."""
        favorites, queue = self.store.load(self.user_id)
        self._favorites = {fav.local_id: fav for fav in favorites}
        self._queue = {item.local_id: item for item in queue}
        if self._favorites:
            removed = deduplicate(self._favorites, self._queue)
            requeued = self._requeue_orphans()
            if removed or requeued:
                self.persist()
        logger.info(
            f"Loaded {len(self._favorites)} favorites, {len(self._queue)} queued "
            f"for user={self.user_id or 'anonymous'}"
        )
        self._emit(DataLoaded(count=len(self._favorites)))

    def persist(self) -> bool:
        return self.store.save(list(self._favorites.values()), list(self._queue.values()), self.user_id)

    # === User Scope ===

    def set_user_id(self, user_id: Optional[str]) -> None:
        """Switch to another user's namespace, dropping the current in-memory state."""
        if user_id == self.user_id:
            return
        self._favorites.clear()
        self._queue.clear()
        self.user_id = user_id
        self.load()
        logger.info(f"Switched to user {user_id}")

    def clear_current_user(self) -> None:
        """Forget the active user in memory (logout). Persisted state is kept."""
        self._favorites.clear()
        self._queue.clear()
        self.user_id = None
        logger.info("Cleared current user data")

    def clear_all(self) -> None:
        """Drop every favorite and queued mutation, in memory and on disk."""
        self._favorites.clear()
        self._queue.clear()
        self.persist()
        logger.info("Cleared all favorites")

    # === Reads ===

    def get(self, local_id: str) -> Optional[FavoriteEntity]:
        return self._favorites.get(local_id)

    def get_by_message_id(self, message_id: str) -> Optional[FavoriteEntity]:
        """Find a favorite by its local or remote message id."""
        for fav in self._favorites.values():
            if fav.message_id == message_id or fav.remote_message_id == message_id:
                return fav
        return None

    def is_favorited(self, message_id: str) -> bool:
        return self.get_by_message_id(message_id) is not None

    def list(self) -> List[FavoriteEntity]:
        """All favorites, most recently favorited first."""
        return sorted(
            self._favorites.values(), key=lambda f: timestamp_key(f.favorited_at), reverse=True
        )

    def queue_items(self) -> List[SyncQueueItem]:
        return list(self._queue.values())

    def get_queue_item(self, local_id: str) -> Optional[SyncQueueItem]:
        return self._queue.get(local_id)

    def has_pending_add(self, message_id: str) -> bool:
        return any(
            item.type == QueueItemType.ADD and item.message_id == message_id
            for item in self._queue.values()
        )

    def get_status(self) -> Dict[str, Any]:
        """Counts and queue details for diagnostics."""
        favorites = list(self._favorites.values())
        return {
            "user_id": self.user_id,
            "total_favorites": len(favorites),
            "pending_sync": sum(1 for f in favorites if f.sync_status == SyncStatus.PENDING),
            "synced": sum(1 for f in favorites if f.sync_status == SyncStatus.SYNCED),
            "failed": sum(1 for f in favorites if f.sync_status == SyncStatus.FAILED),
            "queue_size": len(self._queue),
            "queue_items": [
                {
                    "local_id": item.local_id,
                    "type": item.type.value,
                    "message_id": item.message_id,
                    "retry_count": item.retry_count,
                    "has_remote_message_id": bool(item.remote_message_id),
                }
                for item in self._queue.values()
            ],
            "is_syncing": self.is_syncing,
        }

    # === Local Mutations ===

    def add(
        self,
        message_id: str,
        content: str,
        role: str,
        chat_id: str = "",
        *,
        remote_message_id: Optional[str] = None,
        remote_chat_id: Optional[str] = None,
        mode: Optional[str] = None,
        chat_title: Optional[str] = None,
        created_at: Optional[str] = None,
    ) -> FavoriteEntity:
        """Favorite a message locally and queue it for the remote service.

        Idempotent: an existing favorite for the same message id, or for the
        same ``(content, role)``, is returned unchanged.

        Raises:
            ValueError: If ``role`` is not user, assistant or system.
        """
        role = Role(role)

        existing = self.get_by_message_id(message_id)
        if existing is not None:
            logger.debug(f"Message {message_id} already favorited as {existing.local_id}")
            return existing

        key = (content, role.value)
        for fav in self._favorites.values():
            if fav.dedup_key == key:
                logger.debug(f"Message {message_id} already favorited by content as {fav.local_id}")
                return fav

        favorite = FavoriteEntity(
            local_id=new_local_id(),
            message_id=message_id,
            remote_message_id=remote_message_id,
            chat_id=chat_id,
            remote_chat_id=remote_chat_id,
            content=content,
            role=role,
            mode=mode,
            chat_title=chat_title,
            created_at=created_at or utc_now(),
        )
        self._favorites[favorite.local_id] = favorite
        self._queue[favorite.local_id] = self._add_item(favorite)
        self.persist()
        self._emit(FavoriteAdded(favorite=favorite))
        logger.info(f"Added favorite {favorite.local_id} for message {message_id}")

        self.request_sync()
        return favorite

    def remove(self, message_id: str) -> bool:
        """Unfavorite a message locally; queue a remote delete if it ever synced.

        ``message_id`` may be the local message id, the remote message id or
        the favorite's own local id.
        """
        favorite = self.get_by_message_id(message_id) or self._favorites.get(message_id)
        if favorite is None:
            logger.debug(f"No favorite found for {message_id}")
            return False

        del self._favorites[favorite.local_id]
        if favorite.has_synced:
            self._queue[favorite.local_id] = SyncQueueItem(
                type=QueueItemType.REMOVE,
                local_id=favorite.local_id,
                message_id=favorite.message_id,
                remote_message_id=favorite.remote_message_id,
            )
        else:
            # Never reached the server: nothing to undo remotely
            self._queue.pop(favorite.local_id, None)

        self.persist()
        self._emit(FavoriteRemoved(local_id=favorite.local_id, message_id=message_id))
        logger.info(f"Removed favorite {favorite.local_id}")

        self.request_sync()
        return True

    def remove_by_content(self, content: str, role: str) -> bool:
        key = (content, Role(role).value)
        for fav in self._favorites.values():
            if fav.dedup_key == key:
                return self.remove(fav.local_id)
        return False

    def backfill_remote_message_id(self, message_id: str, remote_message_id: str) -> bool:
        """Record a message's remote id on the favorite and queue item targeting it."""
        favorite = next(
            (f for f in self._favorites.values() if f.message_id == message_id), None
        )
        if favorite is None or not remote_message_id:
            return False
        favorite.remote_message_id = remote_message_id
        item = self._queue.get(favorite.local_id)
        if item is not None and item.type == QueueItemType.ADD:
            item.remote_message_id = remote_message_id
        self.persist()
        return True

    def retry_failed(self) -> int:
        """Re-queue failed or orphaned favorites and reset every item's backoff.

        Returns:
            Number of favorites given a fresh queue item or moved back to pending.
        """
        requeued = 0
        for fav in self._favorites.values():
            if fav.sync_status != SyncStatus.FAILED:
                continue
            fav.sync_status = SyncStatus.PENDING
            if fav.local_id not in self._queue:
                self._queue[fav.local_id] = self._add_item(fav)
            requeued += 1
        requeued += self._requeue_orphans()

        for item in self._queue.values():
            item.retry_count = 0
            item.last_retry_at = None

        self.persist()
        if requeued:
            logger.info(f"Re-queued {requeued} failed favorites")
        self.request_sync()
        return requeued

    @staticmethod
    def _add_item(favorite: FavoriteEntity) -> SyncQueueItem:
        return SyncQueueItem(
            type=QueueItemType.ADD,
            local_id=favorite.local_id,
            message_id=favorite.message_id,
            remote_message_id=favorite.remote_message_id,
        )

    def _requeue_orphans(self) -> int:
        """Queue an ``add`` for pending favorites that lost their queue item.

        The two stored documents are written one after the other, so a crash
        between them can leave a pending favorite with nothing queued.
        """
        orphans = [
            fav
            for fav in self._favorites.values()
            if fav.sync_status == SyncStatus.PENDING
            and not fav.remote_id
            and fav.local_id not in self._queue
        ]
        for fav in orphans:
            self._queue[fav.local_id] = self._add_item(fav)
        if orphans:
            logger.warning(f"Re-queued {len(orphans)} pending favorites with no queue item")
        return len(orphans)

    # === Remote Merge ===

    def merge_remote_favorites(self, records: Iterable[Dict[str, Any]]) -> MergeResult:
        """Fold a remote snapshot into the cache, then deduplicate and persist."""
        result = merge_remote(self._favorites, records, self._queue)
        result.duplicates_removed = len(deduplicate(self._favorites, self._queue))
        self.persist()
        logger.info(
            f"Merged remote favorites: {result.added} added, {result.updated} updated, "
            f"{result.skipped} skipped"
        )
        self._emit(RemoteMerged(added=result.added, updated=result.updated, skipped=result.skipped))
        return result

    def deduplicate_favorites(self) -> int:
        removed = deduplicate(self._favorites, self._queue)
        if removed:
            self.persist()
        return len(removed)

    async def refresh_from_remote(self) -> bool:
        """Fetch the remote snapshot and merge it. Returns False on remote failure."""
        if self.client is None:
            logger.debug("No remote client configured, skipping refresh")
            return False
        user_id = self.user_id
        try:
            records = await self.client.list_favorites(user_id=user_id)
        except Exception as e:
            logger.warning(f"Failed to fetch remote favorites (keeping local data): {e}")
            return False
        if user_id != self.user_id:
            logger.info("User changed during remote fetch, discarding snapshot")
            return False
        self.merge_remote_favorites(records)
        return True

    # === Flush ===

    def retry_delay_ms(self, retry_count: int) -> int:
        return compute_retry_delay_ms(
            retry_count, self.initial_retry_delay_ms, self.max_retry_delay_ms
        )

    async def sync_now(self) -> SyncResult:
        """Drain the sync queue once. A call during a running flush is a no-op."""
        if self.is_syncing:
            return SyncResult(skipped=True)
        self.is_syncing = True
        result = SyncResult()
        self._emit(SyncStarted(pending=len(self._queue)))

        try:
            if self.client is None:
                logger.debug("No remote client configured, skipping sync")
            else:
                await self._process_queue(result)
        except Exception as e:
            logger.error(f"Favorites sync error: {e}", exc_info=True)
            result.errors.append(str(e))
        finally:
            self.is_syncing = False
            self._emit(SyncCompleted(result=result))

        if result.pushed or result.removed or result.failed or result.abandoned:
            logger.info(
                f"Sync complete: pushed={result.pushed}, removed={result.removed}, "
                f"failed={result.failed}, abandoned={result.abandoned}, "
                f"waiting={result.not_ready}"
            )
        return result

    async def force_sync(self) -> SyncResult:
        """Retry failed favorites immediately."""
        self.retry_failed()
        return await self.sync_now()

    async def _process_queue(self, result: SyncResult) -> None:
        for item in list(self._queue.values()):
            if self._queue.get(item.local_id) is not item:
                # Superseded or dropped while an earlier call was awaiting
                continue

            if item.retry_count >= self.max_retries:
                logger.warning(
                    f"Max retries reached for {item.local_id}, removing from queue"
                )
                del self._queue[item.local_id]
                result.abandoned += 1
                continue

            if item.last_retry_at is not None:
                elapsed = self._now_ms() - item.last_retry_at
                if elapsed < self.retry_delay_ms(item.retry_count):
                    result.deferred += 1
                    continue

            try:
                if item.type == QueueItemType.ADD:
                    done = await self._sync_add(item)
                    if not done:
                        result.not_ready += 1
                        continue
                    result.pushed += 1
                else:
                    await self._sync_remove(item)
                    result.removed += 1
                if self._queue.get(item.local_id) is item:
                    del self._queue[item.local_id]
            except Exception as e:
                self._record_failure(item, e)
                result.failed += 1
                result.errors.append(f"{item.type.value} {item.local_id}: {e}")

        self.persist()

    def _resolve_remote_message_id(
        self, favorite: FavoriteEntity, item: SyncQueueItem
    ) -> Optional[str]:
        remote_message_id = favorite.remote_message_id or item.remote_message_id
        if remote_message_id or self.message_lookup is None:
            return remote_message_id
        remote_message_id = self.message_lookup.get_remote_message_id(favorite.message_id)
        if remote_message_id:
            favorite.remote_message_id = remote_message_id
            item.remote_message_id = remote_message_id
        return remote_message_id

    async def _sync_add(self, item: SyncQueueItem) -> bool:
        """Deliver one ``add``. Returns False while the target message isn't synced."""
        favorite = self._favorites.get(item.local_id)
        if favorite is None:
            logger.debug(f"Favorite {item.local_id} no longer exists, dropping add")
            return True
        if favorite.remote_id:
            # Already confirmed, e.g. backfilled by a remote merge
            return True

        remote_message_id = self._resolve_remote_message_id(favorite, item)
        if not remote_message_id:
            logger.debug(f"Message {favorite.message_id} not synced yet, will retry later")
            return False

        remote_id = await self.client.add_favorite(remote_message_id, user_id=self.user_id)

        if self._favorites.get(item.local_id) is not favorite:
            # Removed locally while the request was in flight
            return True
        favorite.mark_synced(remote_id, remote_message_id)
        self._emit(FavoriteSynced(local_id=favorite.local_id, remote_id=favorite.remote_id))
        logger.debug(f"Synced favorite {favorite.local_id} as {favorite.remote_id}")
        return True

    async def _sync_remove(self, item: SyncQueueItem) -> None:
        if not item.remote_message_id:
            logger.debug(f"No remote message id for {item.local_id}, skipping remote delete")
            return
        await self.client.remove_favorite(item.remote_message_id, user_id=self.user_id)
        logger.debug(f"Synced removal of favorite {item.local_id}")

    def _record_failure(self, item: SyncQueueItem, error: Exception) -> None:
        message = str(error)[:500] or type(error).__name__
        item.retry_count += 1
        item.last_retry_at = self._now_ms()
        logger.warning(
            f"Sync failed for {item.local_id}: {message} "
            f"(retry {item.retry_count}/{self.max_retries})"
        )

        favorite = self._favorites.get(item.local_id)
        if favorite is not None:
            if favorite.remote_id:
                # Confirmed by a merge while this call failed; nothing left to deliver
                if self._queue.get(item.local_id) is item:
                    del self._queue[item.local_id]
            else:
                favorite.sync_status = SyncStatus.FAILED
                favorite.sync_error = message
        self._emit(FavoriteSyncFailed(local_id=item.local_id, error=message))
