"""Configuration loading for favsync.

Credentials come from, in priority order:
1. <home>/credentials.json
2. Environment variables (FAVSYNC_BACKEND_URL, FAVSYNC_USER_ID, FAVSYNC_SESSION_COOKIE)

Tunables come from <home>/config.json. The home directory is
``FAVSYNC_DATA_DIR`` or ``~/.favsync``.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from favsync.types import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_COOKIE_NAME = "session"


def get_favsync_home() -> Path:
    """Directory holding favsync's database, credentials and logs."""
    override = os.environ.get("FAVSYNC_DATA_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".favsync"


LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1"})


def _backend_url_problem(url: str, allow_localhost_http: bool) -> Optional[str]:
    parsed = urlparse(url)
    if parsed.scheme == "https":
        return None if parsed.netloc else "no host"
    if parsed.scheme != "http":
        return f"scheme {parsed.scheme or '(none)'!r} is not http(s)"
    if not parsed.netloc:
        return "no host"
    if not allow_localhost_http:
        return "plain http is disabled"
    if parsed.hostname not in LOCAL_HOSTS:
        return "plain http is only accepted for localhost"
    return None


def validate_backend_url(url: str, *, allow_localhost_http: bool = True) -> Optional[str]:
    """Return ``url`` if session cookies may be sent to it, else None.

    https is always accepted; plain http only for a local development server.
    """
    if not url:
        return None
    problem = _backend_url_problem(url, allow_localhost_http)
    if problem:
        logger.warning(f"Ignoring backend_url: {problem}")
        return None
    return url


@dataclass
class FavSyncConfig:
    """Runtime settings for a favsync context."""

    data_dir: Path = field(default_factory=get_favsync_home)
    backend_url: Optional[str] = None
    user_id: Optional[str] = None
    session_cookie: Optional[str] = None
    cookie_name: str = DEFAULT_COOKIE_NAME
    sync_interval: float = 15.0
    persist_interval: float = 5.0
    max_retries: int = 10
    initial_retry_delay_ms: int = 2000
    max_retry_delay_ms: int = 120000
    request_timeout: float = 10.0
    message_settle_delay: float = 0.5
    log_level: str = "INFO"

    @property
    def db_path(self) -> Path:
        return self.data_dir / "favorites.db"

    @property
    def cookies(self) -> Dict[str, str]:
        return {self.cookie_name: self.session_cookie} if self.session_cookie else {}

    @property
    def remote_enabled(self) -> bool:
        return bool(self.backend_url)


TUNABLE_FIELDS = {
    "sync_interval": float,
    "persist_interval": float,
    "max_retries": int,
    "initial_retry_delay_ms": int,
    "max_retry_delay_ms": int,
    "request_timeout": float,
    "message_settle_delay": float,
    "log_level": str,
}


def _read_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.debug(f"Failed to load {path.name}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.debug(f"Ignoring {path.name}: expected an object")
        return {}
    return data


def load_config(data_dir: Optional[Path] = None, *, strict: bool = False) -> FavSyncConfig:
    """Build a config from credentials.json, the environment and config.json.

    Args:
        data_dir: Home directory override; defaults to ``get_favsync_home()``.
        strict: Raise ConfigError for bad tunables instead of keeping defaults.
    """
    home = Path(data_dir) if data_dir else get_favsync_home()
    config = FavSyncConfig(data_dir=home)

    creds = _read_json(home / "credentials.json")
    backend_url = creds.get("backend_url") or os.environ.get("FAVSYNC_BACKEND_URL")
    config.user_id = creds.get("user_id") or os.environ.get("FAVSYNC_USER_ID")
    config.session_cookie = creds.get("session_cookie") or os.environ.get("FAVSYNC_SESSION_COOKIE")
    config.cookie_name = creds.get("cookie_name") or DEFAULT_COOKIE_NAME

    if backend_url:
        config.backend_url = validate_backend_url(backend_url)
        if config.backend_url is None and strict:
            raise ConfigError(f"Rejected backend_url {backend_url!r}")

    settings = _read_json(home / "config.json")
    for name, value in settings.items():
        if name not in TUNABLE_FIELDS:
            continue
        try:
            setattr(config, name, TUNABLE_FIELDS[name](value))
        except (TypeError, ValueError) as e:
            if strict:
                raise ConfigError(f"Invalid value for {name}: {value!r}") from e
            logger.warning(f"Ignoring invalid {name}={value!r} in config.json")

    return config
