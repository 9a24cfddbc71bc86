"""Tests for favsync configuration loading."""

import json
import logging

import pytest

from favsync.config import (
    FavSyncConfig,
    get_favsync_home,
    load_config,
    validate_backend_url,
)
from favsync.types import ConfigError


def write_json(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))


class TestValidateBackendUrl:
    def test_https_allowed(self):
        assert validate_backend_url("https://api.example.com") == "https://api.example.com"

    @pytest.mark.parametrize("url", ["http://localhost:3000/api", "http://127.0.0.1:8000"])
    def test_localhost_http_allowed(self, url):
        assert validate_backend_url(url) == url

    def test_remote_http_rejected(self):
        assert validate_backend_url("http://api.example.com") is None

    def test_localhost_http_can_be_disallowed(self):
        assert validate_backend_url("http://localhost", allow_localhost_http=False) is None

    @pytest.mark.parametrize("url", ["", "ftp://example.com", "https://"])
    def test_invalid_rejected(self, url):
        assert validate_backend_url(url) is None

    def test_lookalike_host_rejected(self):
        assert validate_backend_url("http://localhost.example.com") is None

    def test_rejection_reason_is_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="favsync.config"):
            validate_backend_url("http://api.example.com")
        assert "only accepted for localhost" in caplog.text


class TestHome:
    def test_env_override(self, isolated_home):
        assert get_favsync_home() == isolated_home

    def test_default_home(self, monkeypatch, tmp_path):
        monkeypatch.delenv("FAVSYNC_DATA_DIR")
        monkeypatch.setenv("HOME", str(tmp_path))
        assert get_favsync_home() == tmp_path / ".favsync"


class TestLoadConfig:
    def test_defaults(self, isolated_home):
        config = load_config()

        assert config.data_dir == isolated_home
        assert config.db_path == isolated_home / "favorites.db"
        assert config.backend_url is None
        assert not config.remote_enabled
        assert config.sync_interval == 15.0
        assert config.persist_interval == 5.0
        assert config.max_retries == 10
        assert config.cookies == {}

    def test_credentials_file(self, isolated_home):
        write_json(
            isolated_home / "credentials.json",
            {
                "backend_url": "https://api.example.com",
                "user_id": "user-1",
                "session_cookie": "tok",
                "cookie_name": "sb-session",
            },
        )

        config = load_config()

        assert config.backend_url == "https://api.example.com"
        assert config.user_id == "user-1"
        assert config.cookies == {"sb-session": "tok"}
        assert config.remote_enabled

    def test_environment_fallback(self, monkeypatch):
        monkeypatch.setenv("FAVSYNC_BACKEND_URL", "https://env.example.com")
        monkeypatch.setenv("FAVSYNC_USER_ID", "env-user")

        config = load_config()

        assert config.backend_url == "https://env.example.com"
        assert config.user_id == "env-user"

    def test_credentials_file_beats_environment(self, isolated_home, monkeypatch):
        monkeypatch.setenv("FAVSYNC_USER_ID", "env-user")
        write_json(isolated_home / "credentials.json", {"user_id": "file-user"})

        assert load_config().user_id == "file-user"

    def test_insecure_backend_dropped(self, monkeypatch):
        monkeypatch.setenv("FAVSYNC_BACKEND_URL", "http://api.example.com")
        assert load_config().backend_url is None

    def test_insecure_backend_strict(self, monkeypatch):
        monkeypatch.setenv("FAVSYNC_BACKEND_URL", "http://api.example.com")
        with pytest.raises(ConfigError):
            load_config(strict=True)

    def test_tunables_from_config_file(self, isolated_home):
        write_json(
            isolated_home / "config.json",
            {"sync_interval": 30, "max_retries": "5", "log_level": "DEBUG", "unknown": 1},
        )

        config = load_config()

        assert config.sync_interval == 30.0
        assert config.max_retries == 5
        assert config.log_level == "DEBUG"

    def test_bad_tunable_keeps_default(self, isolated_home):
        write_json(isolated_home / "config.json", {"max_retries": "many"})
        assert load_config().max_retries == 10

    def test_bad_tunable_strict(self, isolated_home):
        write_json(isolated_home / "config.json", {"max_retries": "many"})
        with pytest.raises(ConfigError):
            load_config(strict=True)

    def test_corrupt_files_ignored(self, isolated_home):
        isolated_home.mkdir(parents=True)
        (isolated_home / "credentials.json").write_text("{broken")
        (isolated_home / "config.json").write_text("[1, 2]")

        config = load_config()

        assert config.user_id is None
        assert config.sync_interval == 15.0

    def test_explicit_data_dir(self, tmp_path):
        config = load_config(tmp_path / "elsewhere")
        assert config.data_dir == tmp_path / "elsewhere"


class TestFavSyncConfig:
    def test_cookie_name_default(self, tmp_path):
        config = FavSyncConfig(data_dir=tmp_path, session_cookie="abc")
        assert config.cookies == {"session": "abc"}
