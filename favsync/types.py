"""
Shared record types for favsync.

FavoriteEntity and SyncQueueItem are the two persisted tables owned by the
favorites engine. They serialize to JSON objects with camelCase keys so the
stored layout stays stable across clients.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# === Shared Utility Functions ===


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat()


def epoch_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse an ISO datetime string, returning None when it can't be read."""
    if not s:
        return None
    try:
        parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def timestamp_key(s: Optional[str]) -> datetime:
    """Sort key for ISO timestamps; unparseable values sort oldest."""
    return parse_datetime(s) or _EPOCH


def new_local_id() -> str:
    """Generate a local favorite id (``fav-<epoch ms>-<random>``)."""
    return f"fav-{epoch_ms()}-{uuid.uuid4().hex[:9]}"


# === Enums ===


class Role(str, Enum):
    """Author role of the favorited message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class SyncStatus(str, Enum):
    """Sync status for a favorite."""

    PENDING = "pending"  # Not yet confirmed by the remote service
    SYNCED = "synced"  # Remote service holds this favorite
    FAILED = "failed"  # Last delivery attempt failed


class QueueItemType(str, Enum):
    """Kind of pending remote mutation."""

    ADD = "add"
    REMOVE = "remove"


# === Errors ===


class FavSyncError(Exception):
    """Base class for favsync errors."""


class RemoteSyncError(FavSyncError):
    """Raised when the remote favorites service rejects or cannot serve a call."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigError(FavSyncError):
    """Raised when configuration files cannot be used."""


# === Records ===


@dataclass
class FavoriteEntity:
    """A user's bookmark of one chat message."""

    local_id: str
    message_id: str
    content: str
    role: Role
    chat_id: str = ""
    remote_id: Optional[str] = None
    remote_message_id: Optional[str] = None
    remote_chat_id: Optional[str] = None
    mode: Optional[str] = None
    chat_title: Optional[str] = None
    created_at: Optional[str] = None
    favorited_at: str = field(default_factory=utc_now)
    sync_status: SyncStatus = SyncStatus.PENDING
    sync_error: Optional[str] = None
    last_sync_at: Optional[str] = None

    @property
    def dedup_key(self) -> tuple:
        return (self.content, self.role.value)

    @property
    def has_synced(self) -> bool:
        """True once the remote side has (or may have) a copy."""
        return bool(self.remote_id or self.remote_message_id)

    def mark_synced(self, remote_id: Optional[str], remote_message_id: Optional[str]) -> None:
        if remote_id:
            self.remote_id = remote_id
        if remote_message_id:
            self.remote_message_id = remote_message_id
        self.sync_status = SyncStatus.SYNCED
        self.sync_error = None
        self.last_sync_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.local_id,
            "localId": self.local_id,
            "remoteId": self.remote_id,
            "messageId": self.message_id,
            "remoteMessageId": self.remote_message_id,
            "chatId": self.chat_id,
            "remoteChatId": self.remote_chat_id,
            "content": self.content,
            "role": self.role.value,
            "mode": self.mode,
            "chatTitle": self.chat_title,
            "createdAt": self.created_at,
            "favoritedAt": self.favorited_at,
            "syncStatus": self.sync_status.value,
            "syncError": self.sync_error,
            "lastSyncAt": self.last_sync_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FavoriteEntity":
        """Build from a stored dict. Raises KeyError/ValueError on bad input."""
        local_id = data.get("localId") or data["id"]
        return cls(
            local_id=local_id,
            message_id=data["messageId"],
            content=data["content"],
            role=Role(data["role"]),
            chat_id=data.get("chatId") or "",
            remote_id=data.get("remoteId"),
            remote_message_id=data.get("remoteMessageId"),
            remote_chat_id=data.get("remoteChatId"),
            mode=data.get("mode"),
            chat_title=data.get("chatTitle"),
            created_at=data.get("createdAt"),
            favorited_at=data.get("favoritedAt") or utc_now(),
            sync_status=SyncStatus(data.get("syncStatus") or SyncStatus.PENDING.value),
            sync_error=data.get("syncError"),
            last_sync_at=data.get("lastSyncAt"),
        )


@dataclass
class SyncQueueItem:
    """A pending mutation against the remote favorites service."""

    type: QueueItemType
    local_id: str
    message_id: str
    remote_message_id: Optional[str] = None
    retry_count: int = 0
    last_retry_at: Optional[int] = None  # epoch ms of the last failed attempt

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "localId": self.local_id,
            "messageId": self.message_id,
            "remoteMessageId": self.remote_message_id,
            "retryCount": self.retry_count,
            "lastRetryAt": self.last_retry_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncQueueItem":
        last_retry_at = data.get("lastRetryAt")
        return cls(
            type=QueueItemType(data["type"]),
            local_id=data["localId"],
            message_id=data.get("messageId") or "",
            remote_message_id=data.get("remoteMessageId"),
            retry_count=int(data.get("retryCount") or 0),
            last_retry_at=int(last_retry_at) if last_retry_at is not None else None,
        )


@dataclass
class SyncResult:
    """Result of one flush pass over the sync queue."""

    pushed: int = 0  # add items confirmed by the remote
    removed: int = 0  # remove items completed (with or without a network call)
    not_ready: int = 0  # add items waiting for their message to sync
    deferred: int = 0  # items still inside their backoff window
    failed: int = 0  # items whose remote call raised
    abandoned: int = 0  # items dropped after reaching the retry ceiling
    skipped: bool = False  # True when another flush was already running
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


@dataclass
class MergeResult:
    """Counts from folding a remote snapshot into the local cache."""

    added: int = 0
    updated: int = 0
    skipped: int = 0
    duplicates_removed: int = 0
