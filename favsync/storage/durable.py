"""Durable store for the favorites engine.

Persists the favorite table and the sync queue as two JSON documents per
user. Nothing here raises: read failures degrade to empty collections and
write failures are reported through the return value.
"""

import json
import logging
from typing import Any, Callable, List, Optional, Tuple, TypeVar

from favsync.protocols import KeyValueStore
from favsync.types import FavoriteEntity, SyncQueueItem

logger = logging.getLogger(__name__)

FAVORITES_STORAGE_KEY = "favsync-local-favorites"
SYNC_QUEUE_KEY = "favsync-favorites-sync-queue"

T = TypeVar("T")


def storage_key(base: str, user_id: Optional[str]) -> str:
    """Namespace a storage key by user; anonymous state uses the bare key."""
    return f"{base}-{user_id}" if user_id else base


class DurableStore:
    """Load and save the favorites table and sync queue.

    Args:
        kv: The key-value backend holding the JSON documents.
    """

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def load(self, user_id: Optional[str]) -> Tuple[List[FavoriteEntity], List[SyncQueueItem]]:
        favorites = self._load_collection(
            storage_key(FAVORITES_STORAGE_KEY, user_id), FavoriteEntity.from_dict
        )
        queue = self._load_collection(storage_key(SYNC_QUEUE_KEY, user_id), SyncQueueItem.from_dict)
        logger.debug(
            f"Loaded {len(favorites)} favorites and {len(queue)} queue items "
            f"for user={user_id or 'anonymous'}"
        )
        return favorites, queue

    def save(
        self,
        favorites: List[FavoriteEntity],
        queue: List[SyncQueueItem],
        user_id: Optional[str],
    ) -> bool:
        """Write both collections. Returns False if the backend refused."""
        try:
            self.kv.set(
                storage_key(FAVORITES_STORAGE_KEY, user_id),
                json.dumps([f.to_dict() for f in favorites]),
            )
            self.kv.set(
                storage_key(SYNC_QUEUE_KEY, user_id),
                json.dumps([item.to_dict() for item in queue]),
            )
        except Exception as e:
            logger.error(f"Error saving favorites to storage: {e}", exc_info=True)
            return False
        return True

    def clear(self, user_id: Optional[str]) -> bool:
        try:
            self.kv.delete(storage_key(FAVORITES_STORAGE_KEY, user_id))
            self.kv.delete(storage_key(SYNC_QUEUE_KEY, user_id))
        except Exception as e:
            logger.error(f"Error clearing favorites storage: {e}", exc_info=True)
            return False
        return True

    def _load_collection(self, key: str, parse: Callable[[Any], T]) -> List[T]:
        try:
            raw = self.kv.get(key)
        except Exception as e:
            logger.error(f"Error reading {key} from storage: {e}", exc_info=True)
            return []
        if not raw:
            return []

        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as e:
            logger.error(f"Corrupt JSON under {key}, starting empty: {e}")
            return []
        if not isinstance(data, list):
            logger.error(f"Expected a list under {key}, got {type(data).__name__}")
            return []

        items: List[T] = []
        for entry in data:
            try:
                items.append(parse(entry))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed entry under {key}: {e}")
        return items
