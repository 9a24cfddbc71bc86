"""
favsync - Local-first favorites with background sync.

Favorites are written locally first and delivered to the remote service
in the background, with retry, backoff and merge of remote snapshots.
"""

from .context import SyncContext, create_context
from .engine import FavoritesEngine
from .events import EventBus, EventType
from .types import FavoriteEntity, SyncQueueItem, SyncStatus

try:
    from importlib.metadata import version

    __version__ = version("favsync")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "EventBus",
    "EventType",
    "FavoriteEntity",
    "FavoritesEngine",
    "SyncContext",
    "SyncQueueItem",
    "SyncStatus",
    "create_context",
]
