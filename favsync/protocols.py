"""
favsync Protocol Definitions
============================

Interface contracts between the favorites engine and its collaborators.

- KeyValueStore:  durable string storage (SQLite file, memory, ...).
- FavoritesAPI:   the remote favorites service.
- MessageLookup:  the chat-message engine's view of its own records.

The favorites engine depends only on these protocols and on the shared
EventBus; it never imports the message engine.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class KeyValueStore(Protocol):
    """String key-value storage.

    Implementations may raise on I/O failure; DurableStore logs any error
    and keeps the engine running from memory.
    """

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


@runtime_checkable
class FavoritesAPI(Protocol):
    """Remote favorites service. Failures raise ``RemoteSyncError``."""

    async def add_favorite(
        self, remote_message_id: str, *, user_id: Optional[str] = None
    ) -> Optional[str]:
        """Create a favorite and return its remote id."""
        ...

    async def remove_favorite(
        self, remote_message_id: str, *, user_id: Optional[str] = None
    ) -> None:
        """Delete a favorite. An already-deleted favorite is not an error."""
        ...

    async def list_favorites(self, *, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Fetch the user's remote favorites snapshot."""
        ...


@runtime_checkable
class MessageLookup(Protocol):
    """Read access to the chat-message engine's local records."""

    def get_remote_message_id(self, message_id: str) -> Optional[str]:
        """Return the remote id of a local message, or None if it hasn't synced."""
        ...
