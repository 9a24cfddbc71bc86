"""Persistence layer for favsync."""

from favsync.storage.durable import (
    FAVORITES_STORAGE_KEY,
    SYNC_QUEUE_KEY,
    DurableStore,
    storage_key,
)
from favsync.storage.kv import MemoryKeyValueStore, SQLiteKeyValueStore

__all__ = [
    "DurableStore",
    "FAVORITES_STORAGE_KEY",
    "MemoryKeyValueStore",
    "SQLiteKeyValueStore",
    "SYNC_QUEUE_KEY",
    "storage_key",
]
