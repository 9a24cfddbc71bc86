"""Remote merge and deduplication for the favorites cache.

Both operations work on the engine's tables in place and never delete an
entity just because the remote snapshot lacks it: a local addition that
hasn't reached the server yet is not a deletion.

Duplicates are detected by ``(content, role)``. The same message can carry
a local id on one side and a remote id on the other before the two are
known to correspond, so identifiers alone can't find them.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from favsync.types import (
    FavoriteEntity,
    MergeResult,
    QueueItemType,
    Role,
    SyncQueueItem,
    SyncStatus,
    timestamp_key,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass
class RemoteFavorite:
    """A remote favorite with the denormalized message it points at."""

    id: str
    message_id: str
    content: str
    role: Role
    created_at: Optional[str] = None
    message_created_at: Optional[str] = None
    chat_id: Optional[str] = None
    chat_title: Optional[str] = None
    chat_mode: Optional[str] = None

    def to_entity(self) -> FavoriteEntity:
        """Materialize a synced local entity for a favorite added elsewhere."""
        local_id = f"fav-remote-{self.id}"
        return FavoriteEntity(
            local_id=local_id,
            remote_id=self.id,
            message_id=self.message_id,
            remote_message_id=self.message_id,
            chat_id=self.chat_id or "",
            remote_chat_id=self.chat_id,
            content=self.content,
            role=self.role,
            mode=self.chat_mode,
            chat_title=self.chat_title,
            created_at=self.message_created_at,
            favorited_at=self.created_at or utc_now(),
            sync_status=SyncStatus.SYNCED,
            last_sync_at=utc_now(),
        )


def parse_remote_favorite(data: Dict[str, Any]) -> Optional[RemoteFavorite]:
    """Normalize one remote record, or return None if it can't be used.

    Accepts the joined shape (``chat_messages`` / ``chats``) as well as the
    shape served by ``GET /favorites`` (``message`` / ``chat``).
    """
    if not isinstance(data, dict):
        return None
    message = data.get("chat_messages") or data.get("message")
    if not isinstance(message, dict):
        return None
    chat = message.get("chats") or message.get("chat") or {}
    if not isinstance(chat, dict):
        chat = {}

    remote_id = data.get("id")
    message_id = data.get("message_id") or message.get("id")
    if not remote_id or not message_id or message.get("content") is None:
        return None
    try:
        role = Role(message.get("role"))
    except ValueError:
        logger.warning(f"Remote favorite {remote_id} has unknown role {message.get('role')!r}")
        return None

    return RemoteFavorite(
        id=str(remote_id),
        message_id=str(message_id),
        content=message["content"],
        role=role,
        created_at=data.get("created_at"),
        message_created_at=message.get("created_at"),
        chat_id=chat.get("id"),
        chat_title=chat.get("title"),
        chat_mode=chat.get("mode"),
    )


def _find(
    favorites: Dict[str, FavoriteEntity], predicate: Callable[[FavoriteEntity], bool]
) -> Optional[FavoriteEntity]:
    for fav in favorites.values():
        if predicate(fav):
            return fav
    return None


def pending_removals(queue: Optional[Dict[str, SyncQueueItem]]) -> Set[str]:
    """Remote message ids with a queued ``remove`` not yet confirmed."""
    if not queue:
        return set()
    return {
        item.remote_message_id
        for item in queue.values()
        if item.type == QueueItemType.REMOVE and item.remote_message_id
    }


def merge_remote(
    favorites: Dict[str, FavoriteEntity],
    records: Iterable[Dict[str, Any]],
    queue: Optional[Dict[str, SyncQueueItem]] = None,
) -> MergeResult:
    """Fold a remote snapshot into ``favorites`` (modified in place).

    Records the user already removed locally, with the delete still queued,
    are skipped so a stale snapshot can't bring them back.
    """
    result = MergeResult()
    seen_keys = {fav.dedup_key for fav in favorites.values()}
    removing = pending_removals(queue)

    for raw in records:
        remote = parse_remote_favorite(raw)
        if remote is None:
            result.skipped += 1
            continue
        if remote.message_id in removing or remote.id in removing:
            logger.debug(f"Remote favorite {remote.id} has a pending local removal, skipping")
            result.skipped += 1
            continue

        key = (remote.content, remote.role.value)
        if key in seen_keys:
            # Another representation of something we already hold
            existing = _find(favorites, lambda f: f.dedup_key == key)
            if existing is not None and not existing.remote_id:
                existing.mark_synced(remote.id, remote.message_id)
                result.updated += 1
            else:
                result.skipped += 1
            continue
        seen_keys.add(key)

        existing = _find(favorites, lambda f: f.remote_id == remote.id)
        if existing is None:
            existing = _find(favorites, lambda f: f.remote_message_id == remote.message_id)

        if existing is not None:
            existing.mark_synced(remote.id, remote.message_id)
            result.updated += 1
        else:
            entity = remote.to_entity()
            favorites[entity.local_id] = entity
            result.added += 1

    return result


def _is_confirmed(fav: FavoriteEntity) -> bool:
    return fav.sync_status == SyncStatus.SYNCED or bool(fav.remote_id)


def deduplicate(
    favorites: Dict[str, FavoriteEntity], queue: Dict[str, SyncQueueItem]
) -> List[str]:
    """Collapse entities sharing ``(content, role)`` down to one.

    Keeps the synced (or remote-identified) entity, otherwise the most
    recently favorited one. Losers are dropped from both tables; their
    pending queue items go with them.

    Returns:
        Local ids of the removed entities.
    """
    winners: Dict[tuple, FavoriteEntity] = {}
    losers: List[str] = []

    for local_id, fav in favorites.items():
        key = fav.dedup_key
        current = winners.get(key)
        if current is None:
            winners[key] = fav
        elif _is_confirmed(current):
            losers.append(local_id)
        elif _is_confirmed(fav):
            losers.append(current.local_id)
            winners[key] = fav
        elif timestamp_key(fav.favorited_at) > timestamp_key(current.favorited_at):
            losers.append(current.local_id)
            winners[key] = fav
        else:
            losers.append(local_id)

    for local_id in losers:
        favorites.pop(local_id, None)
        queue.pop(local_id, None)

    if losers:
        logger.info(f"Removed {len(losers)} duplicate favorites")
    return losers
