"""Tests for TokenManager: lazy refresh, single flight, PKCE completion."""

import asyncio
import io
import logging
import threading
import time
import urllib.error

import pytest

from nowplaying.spotify import pkce
from nowplaying.spotify.auth import AuthorizationError, AuthState, TokenManager
from nowplaying.spotify.tokens import TokenSet, load_tokens

NOW = 1_000_000_000


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


def _manager(settings, tokens=None, clock=None, notices=None, saved=None):
    def save(t):
        if saved is not None:
            saved.append(t)

    mgr = TokenManager(
        settings,
        load=lambda: tokens,
        save=save,
        notify=notices.append if notices is not None else None,
        clock=clock or Clock(),
    )
    mgr.load()
    return mgr


def _http_error(code, body=b'{"error": "invalid_grant"}'):
    return urllib.error.HTTPError(pkce.TOKEN_URL, code, "Bad Request", {}, io.BytesIO(body))


class TestLazyRefresh:

    @pytest.mark.asyncio
    async def test_cached_token_until_skew_boundary(self, settings, monkeypatch):
        calls = []
        monkeypatch.setattr(pkce, "refresh_access_token",
                            lambda *a: calls.append(a) or {"access_token": "new", "expires_in": 3600})
        clock = Clock()
        mgr = _manager(settings, TokenSet("old", "r1", NOW + 120_000), clock=clock)

        clock.now = NOW + 59_999
        assert await mgr.get_valid_access_token() == "old"
        assert mgr.state is AuthState.VALID
        assert calls == []

        clock.now = NOW + 60_000
        assert mgr.state is AuthState.EXPIRING
        assert await mgr.get_valid_access_token() == "new"
        assert len(calls) == 1
        assert mgr.tokens.refresh_token == "r1"
        assert mgr.tokens.expires_at_ms == NOW + 60_000 + 3600 * 1000

    @pytest.mark.asyncio
    async def test_new_token_is_saved_before_it_is_returned(self, settings, monkeypatch):
        monkeypatch.setattr(pkce, "refresh_access_token",
                            lambda *a: {"access_token": "new", "refresh_token": "r2", "expires_in": 3600})
        saved = []
        mgr = _manager(settings, TokenSet("old", "r1", NOW), saved=saved)

        token = await mgr.get_valid_access_token()

        assert token == "new"
        assert saved[-1].access_token == "new"
        assert saved[-1].refresh_token == "r2"

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, settings, monkeypatch):
        calls = []
        lock = threading.Lock()

        def slow_refresh(*args):
            with lock:
                calls.append(args)
            time.sleep(0.05)
            return {"access_token": "new", "expires_in": 3600}

        monkeypatch.setattr(pkce, "refresh_access_token", slow_refresh)
        mgr = _manager(settings, TokenSet("old", "r1", NOW))

        tokens = await asyncio.gather(*(mgr.get_valid_access_token() for _ in range(5)))

        assert tokens == ["new"] * 5
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_is_used_next_time(self, settings, monkeypatch):
        seen = []

        def refresh(client_id, refresh_token, token_url):
            seen.append(refresh_token)
            return {"access_token": f"a{len(seen)}", "refresh_token": f"r{len(seen) + 1}",
                    "expires_in": 60}

        monkeypatch.setattr(pkce, "refresh_access_token", refresh)
        mgr = _manager(settings, TokenSet("old", "r1", NOW))

        await mgr.get_valid_access_token()
        await mgr.get_valid_access_token()

        assert seen == ["r1", "r2"]


class TestRefreshFailures:

    @pytest.mark.asyncio
    async def test_rejected_refresh_invalidates_once(self, settings, monkeypatch):
        calls = []

        def reject(*args):
            calls.append(args)
            raise _http_error(400)

        monkeypatch.setattr(pkce, "refresh_access_token", reject)
        notices = []
        mgr = _manager(settings, TokenSet("old", "r1", NOW), notices=notices)

        assert await mgr.get_valid_access_token() is None
        assert await mgr.get_valid_access_token() is None

        assert mgr.state is AuthState.INVALID
        assert len(calls) == 1
        assert [n.level for n in notices] == ["warning"]
        assert notices[0].message == "Spotify session expired. Please reconnect."

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, settings, monkeypatch):
        attempts = []

        def flaky(*args):
            attempts.append(args)
            if len(attempts) == 1:
                raise urllib.error.URLError("connection refused")
            return {"access_token": "new", "expires_in": 3600}

        monkeypatch.setattr(pkce, "refresh_access_token", flaky)
        notices = []
        mgr = _manager(settings, TokenSet("old", "r1", NOW), notices=notices)

        assert await mgr.get_valid_access_token() is None
        assert mgr.state is AuthState.EXPIRING
        assert await mgr.get_valid_access_token() == "new"
        assert notices == []

    @pytest.mark.asyncio
    async def test_no_tokens_means_no_request(self, settings, monkeypatch):
        monkeypatch.setattr(pkce, "refresh_access_token",
                            lambda *a: pytest.fail("refresh without tokens"))
        mgr = _manager(settings, None)

        assert mgr.state is AuthState.NO_TOKEN
        assert await mgr.get_valid_access_token() is None


class TestAuthorization:

    def test_begin_requires_client_id(self, settings):
        settings.client_id = ""
        mgr = _manager(settings)
        with pytest.raises(AuthorizationError):
            mgr.begin_authorization()

    def test_begin_builds_url_with_challenge(self, settings):
        mgr = _manager(settings)
        session, url = mgr.begin_authorization()

        assert mgr.state is AuthState.AUTHORIZING
        assert len(session.code_verifier) == 128
        assert f"state={session.state}" in url
        assert pkce.generate_code_challenge(session.code_verifier) in url

    @pytest.mark.asyncio
    async def test_state_mismatch_is_rejected(self, settings, monkeypatch):
        monkeypatch.setattr(pkce, "exchange_code", lambda *a: pytest.fail("exchanged"))
        mgr = _manager(settings)
        session, _ = mgr.begin_authorization()

        with pytest.raises(AuthorizationError):
            await mgr.complete_authorization("code", "wrong-state")
        assert mgr.session is session

    @pytest.mark.asyncio
    async def test_complete_persists_and_announces(self, settings, monkeypatch):
        exchanged = []

        def exchange(code, client_id, verifier, redirect_uri, token_url):
            exchanged.append((code, client_id, verifier, redirect_uri))
            return {"access_token": "a1", "refresh_token": "r1", "expires_in": 3600}

        monkeypatch.setattr(pkce, "exchange_code", exchange)
        notices = []
        mgr = TokenManager(settings, notify=notices.append, clock=Clock())
        session, _ = mgr.begin_authorization()

        assert await mgr.complete_authorization("the-code", session.state) is True

        assert exchanged == [("the-code", "client-123", session.code_verifier, session.redirect_uri)]
        assert load_tokens(settings.token_path) == TokenSet("a1", "r1", NOW + 3600 * 1000)
        assert mgr.state is AuthState.VALID
        assert mgr.session is None
        assert notices[-1].level == "success"

    @pytest.mark.asyncio
    async def test_failed_exchange_returns_false(self, settings, monkeypatch):
        def fail(*args):
            raise _http_error(400)

        monkeypatch.setattr(pkce, "exchange_code", fail)
        notices = []
        mgr = _manager(settings, notices=notices)
        session, _ = mgr.begin_authorization()

        assert await mgr.complete_authorization("code", session.state) is False
        assert mgr.state is AuthState.NO_TOKEN
        assert notices[-1].message == "Failed to authenticate with Spotify."

    @pytest.mark.asyncio
    async def test_reauthorizing_clears_invalid(self, settings, monkeypatch):
        def reject(*args):
            raise _http_error(401)

        monkeypatch.setattr(pkce, "refresh_access_token", reject)
        monkeypatch.setattr(pkce, "exchange_code",
                            lambda *a: {"access_token": "a2", "refresh_token": "r2", "expires_in": 3600})
        mgr = _manager(settings, TokenSet("old", "r1", NOW))
        await mgr.get_valid_access_token()
        assert mgr.state is AuthState.INVALID

        session, _ = mgr.begin_authorization()
        await mgr.complete_authorization("code", session.state)

        assert await mgr.get_valid_access_token() == "a2"


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_disconnect_forgets_tokens(self, settings):
        notices = []
        mgr = TokenManager(settings, notify=notices.append, clock=Clock())
        mgr.tokens = TokenSet("a", "r", NOW + 3600 * 1000)

        await mgr.disconnect()

        assert mgr.state is AuthState.NO_TOKEN
        assert await mgr.get_valid_access_token() is None
        assert load_tokens(settings.token_path).empty
        assert notices[-1].message == "Disconnected from Spotify."


class TestSupersededRefresh:

    @pytest.mark.asyncio
    async def test_disconnect_during_refresh_stays_disconnected(self, settings, monkeypatch):
        def slow_refresh(*args):
            time.sleep(0.1)
            return {"access_token": "new", "refresh_token": "r2", "expires_in": 3600}

        monkeypatch.setattr(pkce, "refresh_access_token", slow_refresh)
        mgr = TokenManager(settings, load=lambda: TokenSet("old", "r1", NOW), clock=Clock())
        mgr.load()

        pending = asyncio.ensure_future(mgr.get_valid_access_token())
        await asyncio.sleep(0.02)
        await mgr.disconnect()
        assert mgr.state is AuthState.NO_TOKEN

        assert await pending is None
        assert mgr.state is AuthState.NO_TOKEN
        assert mgr.tokens == TokenSet()
        assert load_tokens(settings.token_path).empty

    @pytest.mark.asyncio
    async def test_new_authorization_wins_over_stale_refresh(self, settings, monkeypatch):
        def slow_refresh(*args):
            time.sleep(0.1)
            return {"access_token": "stale", "refresh_token": "r-stale", "expires_in": 3600}

        monkeypatch.setattr(pkce, "refresh_access_token", slow_refresh)
        monkeypatch.setattr(pkce, "exchange_code",
                            lambda *a: {"access_token": "fresh", "refresh_token": "r-fresh",
                                        "expires_in": 3600})
        mgr = TokenManager(settings, load=lambda: TokenSet("old", "r1", NOW), clock=Clock())
        mgr.load()

        pending = asyncio.ensure_future(mgr.get_valid_access_token())
        await asyncio.sleep(0.02)
        session, _ = mgr.begin_authorization()
        assert await mgr.complete_authorization("code", session.state) is True
        await pending

        assert mgr.tokens.access_token == "fresh"
        assert load_tokens(settings.token_path).access_token == "fresh"


class TestMalformedResponses:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        {"access_token": "x", "expires_in": "soon"},
        {"access_token": "x", "expires_in": float("inf")},
        {"access_token": 42, "expires_in": 3600},
        ["access_token", "x"],
        "x",
    ])
    async def test_malformed_refresh_is_transient(self, settings, monkeypatch, response):
        monkeypatch.setattr(pkce, "refresh_access_token", lambda *a: response)
        notices = []
        saved = []
        mgr = _manager(settings, TokenSet("old", "r1", NOW), notices=notices, saved=saved)

        assert await mgr.get_valid_access_token() is None

        assert mgr.state is AuthState.EXPIRING
        assert mgr.tokens == TokenSet("old", "r1", NOW)
        assert saved == []
        assert notices == []

    @pytest.mark.asyncio
    async def test_malformed_exchange_fails_authorization(self, settings, monkeypatch):
        monkeypatch.setattr(pkce, "exchange_code",
                            lambda *a: {"access_token": "a1", "expires_in": "soon"})
        notices = []
        mgr = _manager(settings, notices=notices)
        session, _ = mgr.begin_authorization()

        assert await mgr.complete_authorization("code", session.state) is False
        assert mgr.state is AuthState.NO_TOKEN
        assert notices[-1].level == "error"


class TestSaveFailure:

    @pytest.mark.asyncio
    async def test_unsaved_token_is_used_and_logged_as_error(self, settings, monkeypatch, caplog):
        monkeypatch.setattr(pkce, "refresh_access_token",
                            lambda *a: {"access_token": "new", "expires_in": 3600})

        def broken_save(tokens):
            raise OSError("read-only file system")

        mgr = TokenManager(settings, load=lambda: TokenSet("old", "r1", NOW),
                           save=broken_save, clock=Clock())
        mgr.load()

        with caplog.at_level(logging.ERROR, logger="nowplaying.spotify.auth"):
            assert await mgr.get_valid_access_token() == "new"

        assert any("Could not save" in r.getMessage() for r in caplog.records
                   if r.levelno == logging.ERROR)
