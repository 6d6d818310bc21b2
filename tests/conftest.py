import pytest

from nowplaying.lib import config
from nowplaying.lib.config import Settings


@pytest.fixture
def settings(tmp_path):
    return Settings(
        client_id="client-123",
        poll_interval=0.05,
        token_path=str(tmp_path / "spotify_tokens.json"),
    )


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    """Never read a real config file during tests."""
    monkeypatch.setenv("NOWPLAYING_CONFIG", str(tmp_path / "missing-config.json"))
    monkeypatch.delenv("SPOTIFY_CLIENT_ID", raising=False)
    monkeypatch.setattr(config, "_search_paths", lambda: [str(tmp_path / "missing-config.json")])
    config._config = None
    yield
    config._config = None
