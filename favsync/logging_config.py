"""Logging setup for favsync.

``setup_favsync_logging`` writes the ``favsync`` logger to
``<home>/logs/local-<date>.log``. The ``log_*`` helpers append one-line sync
records to ``<home>/logs/sync-events-<date>.log`` for later auditing.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from favsync.config import get_favsync_home
from favsync.types import SyncResult

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _log_dir() -> Path:
    log_dir = get_favsync_home() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def setup_favsync_logging(user_id: Optional[str] = None, level: str = "INFO") -> logging.Logger:
    """Attach file (and at DEBUG, console) handlers to the ``favsync`` logger.

    Safe to call repeatedly; handlers are only added once.
    """
    logger = logging.getLogger("favsync")
    resolved = getattr(logging, str(level).upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logger.setLevel(resolved)

    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        handler = logging.FileHandler(_log_dir() / f"local-{_today()}.log")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in logger.handlers
    )
    if resolved == logging.DEBUG and not has_console:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(console)

    logger.debug(f"Logging initialized for user={user_id or 'anonymous'}")
    return logger


def log_sync_event(event_type: str, details: str, user_id: Optional[str] = None) -> None:
    """Append one ``<time> | <event> | user=<id> | <details>`` line."""
    timestamp = datetime.now(timezone.utc).isoformat()
    line = f"{timestamp} | {event_type} | user={user_id or 'anonymous'} | {details}\n"
    with open(_log_dir() / f"sync-events-{_today()}.log", "a") as f:
        f.write(line)


def log_flush(user_id: Optional[str], result: SyncResult) -> None:
    log_sync_event(
        "flush",
        f"pushed={result.pushed}, removed={result.removed}, not_ready={result.not_ready}, "
        f"failed={result.failed}, abandoned={result.abandoned}",
        user_id=user_id,
    )


def log_merge(user_id: Optional[str], added: int, updated: int, skipped: int = 0) -> None:
    log_sync_event(
        "merge", f"added={added}, updated={updated}, skipped={skipped}", user_id=user_id
    )
