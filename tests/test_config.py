"""Tests for config loading and Settings."""

import json

from nowplaying.lib import config
from nowplaying.lib.config import Settings, cfg
from nowplaying.lib.state import BackendMode

# conftest replaces config._search_paths; keep the real one for its own test
ORIGINAL_SEARCH_PATHS = config._search_paths


def _use_config(monkeypatch, tmp_path, data):
    path = tmp_path / "config.json"
    path.write_text(data if isinstance(data, str) else json.dumps(data))
    monkeypatch.setattr(config, "_search_paths", lambda: [str(path)])
    config._config = None


def test_env_override_is_searched_first(monkeypatch):
    monkeypatch.setenv("NOWPLAYING_CONFIG", "/tmp/custom.json")
    assert ORIGINAL_SEARCH_PATHS() == ["/tmp/custom.json", "/etc/nowplaying/config.json", "config.json"]


def test_defaults_without_config_file():
    settings = Settings.from_config()
    assert settings.mode is BackendMode.LOCAL
    assert settings.poll_interval == 1.0
    assert settings.enable_panel is True
    assert settings.redirect_uri == "http://127.0.0.1:8780/callback"


def test_values_from_file(monkeypatch, tmp_path):
    _use_config(monkeypatch, tmp_path, {
        "backend": {"mode": "remote"},
        "spotify": {"client_id": "abc", "token_path": "/var/lib/np/tokens.json"},
        "polling": {"interval": 0.5},
        "panel": {"enabled": False},
        "bridge": {"player": "vlc", "timeout": 2},
        "server": {"host": "0.0.0.0", "port": 9000},
    })
    settings = Settings.from_config()

    assert settings.mode is BackendMode.REMOTE
    assert settings.client_id == "abc"
    assert settings.poll_interval == 0.5
    assert settings.enable_panel is False
    assert settings.bridge_player == "vlc"
    assert settings.bridge_timeout == 2.0
    assert settings.port == 9000
    assert settings.redirect_uri == "http://0.0.0.0:9000/callback"
    assert settings.token_path == "/var/lib/np/tokens.json"


def test_env_client_id_wins(monkeypatch, tmp_path):
    _use_config(monkeypatch, tmp_path, {"spotify": {"client_id": "from-file"}})
    monkeypatch.setenv("SPOTIFY_CLIENT_ID", "from-env")
    assert Settings.from_config().client_id == "from-env"


def test_bad_values_fall_back(monkeypatch, tmp_path):
    _use_config(monkeypatch, tmp_path, {"backend": {"mode": "cassette"}, "polling": {"interval": -1}})
    settings = Settings.from_config()
    assert settings.mode is BackendMode.LOCAL
    assert settings.poll_interval == 1.0


def test_invalid_json_is_ignored(monkeypatch, tmp_path):
    _use_config(monkeypatch, tmp_path, "{broken")
    assert cfg("backend", "mode", default="local") == "local"
    assert config.load_config() == {}
