"""
Spotify token management — the ONE place for token refresh.

TokenManager owns the TokenSet and walks it through:

    NO_TOKEN ──begin_authorization──▶ AUTHORIZING ──complete_authorization──▶ VALID
    VALID ──(within 60s of expiry)──▶ EXPIRING ──refresh──▶ VALID | INVALID
    INVALID ──disconnect──▶ NO_TOKEN

Refresh is lazy: it happens inside get_valid_access_token(), never on a
timer.  Concurrent callers share one in-flight refresh because Spotify
rotates refresh tokens and a duplicate request can invalidate the first.
Every new token is written to the store before any caller sees it.  If the
write itself fails (disk full, read-only home) the token is still used from
memory and the failure is logged at ERROR; the next refresh retries the save.

disconnect() and a completed authorization supersede any refresh still in
flight: its result is dropped, never persisted.  A malformed token-endpoint
response is a transient failure, like a network error.
"""

import asyncio
import json
import logging
import math
import secrets
import time
import urllib.error
from dataclasses import dataclass
from enum import Enum

from ..lib.state import Notice
from . import pkce
from .tokens import TokenSet, load_tokens, save_tokens

log = logging.getLogger(__name__)

SKEW_MS = 60_000


def _now_ms():
    return int(time.time() * 1000)


class AuthState(str, Enum):
    NO_TOKEN = "no_token"
    AUTHORIZING = "authorizing"
    VALID = "valid"
    EXPIRING = "expiring"
    REFRESHING = "refreshing"
    INVALID = "invalid"


class AuthorizationError(ValueError):
    """Authorization code arrived without a matching session."""


@dataclass
class AuthorizationSession:
    code_verifier: str
    state: str
    redirect_uri: str


class TokenManager:
    """Holds Spotify credentials and hands out valid access tokens."""

    def __init__(self, settings, load=None, save=None, notify=None, clock=None):
        self.settings = settings
        self._load = load or (lambda: load_tokens(settings.token_path))
        self._save = save or (lambda tokens: save_tokens(tokens, settings.token_path))
        self._notify = notify
        self._clock = clock or _now_ms
        self.token_url = pkce.TOKEN_URL
        self.tokens = TokenSet()
        self.session: AuthorizationSession | None = None
        self.revoked = False
        self._refresh_task: asyncio.Future | None = None
        # Bumped by disconnect/authorization; results from older generations are dropped
        self._generation = 0
        self._persist_lock = asyncio.Lock()

    def load(self):
        """Load credentials from the token store. Returns True if any were found."""
        tokens = self._load()
        if tokens and not tokens.empty:
            self.tokens = tokens
            log.info("Spotify credentials loaded (expires in %ds)",
                     max(0, tokens.expires_at_ms - self._clock()) // 1000)
            return True
        log.info("No Spotify tokens found — connect via /auth/start")
        return False

    @property
    def state(self) -> AuthState:
        if self._refresh_task is not None and not self._refresh_task.done():
            return AuthState.REFRESHING
        if self.revoked:
            return AuthState.INVALID
        if not self.tokens.access_token:
            return AuthState.AUTHORIZING if self.session else AuthState.NO_TOKEN
        if self._clock() < self.tokens.expires_at_ms - SKEW_MS:
            return AuthState.VALID
        return AuthState.EXPIRING

    @property
    def is_configured(self):
        return bool(self.settings.client_id and self.tokens.refresh_token)

    # -- Authorization (PKCE) --

    def begin_authorization(self, redirect_uri=None):
        """Start a new attempt; returns (session, authorization URL)."""
        if not self.settings.client_id:
            raise AuthorizationError("Please enter a Spotify client id in the settings first.")
        verifier = pkce.generate_code_verifier(128)
        session = AuthorizationSession(
            code_verifier=verifier,
            state=pkce.generate_state(16),
            redirect_uri=redirect_uri or self.settings.redirect_uri,
        )
        self.session = session
        url = pkce.build_auth_url(
            self.settings.client_id, session.redirect_uri,
            pkce.generate_code_challenge(verifier), pkce.SCOPES, session.state)
        log.info("OAuth: authorization started (redirect_uri=%s)", session.redirect_uri)
        return session, url

    def abandon_authorization(self):
        if self.session:
            log.info("OAuth: authorization abandoned")
        self.session = None

    async def complete_authorization(self, code, state):
        """Exchange *code* for tokens. Returns True once they are persisted."""
        session = self.session
        if session is None:
            raise AuthorizationError("No authorization in progress")
        if not secrets.compare_digest(str(state or ""), session.state):
            raise AuthorizationError("State mismatch")
        self.session = None
        generation = self._supersede()

        loop = asyncio.get_running_loop()
        try:
            log.info("OAuth: exchanging authorization code")
            data = await loop.run_in_executor(
                None, pkce.exchange_code, code, self.settings.client_id,
                session.code_verifier, session.redirect_uri, self.token_url)
            if not isinstance(data, dict):
                raise ValueError(f"unexpected token response: {type(data).__name__}")
            if not data.get("access_token"):
                raise ValueError(f"no access token ({data.get('error')})")
            tokens = self._token_set(data, data.get("refresh_token") or "")
        except (urllib.error.URLError, OSError, ValueError) as e:
            log.error("OAuth code exchange failed: %s", e)
            self._emit("error", "Failed to authenticate with Spotify.")
            return False

        if not await self._persist(tokens, generation):
            log.info("OAuth: result dropped, credentials changed during the exchange")
            return False
        self.revoked = False
        self._emit("success", "Connected to Spotify successfully!")
        return True

    async def disconnect(self):
        """Forget all credentials, including any refresh still in flight."""
        generation = self._supersede()
        self.tokens = TokenSet()
        self.revoked = False
        self.session = None
        await self._persist(TokenSet(), generation)
        log.info("Spotify disconnected")
        self._emit("info", "Disconnected from Spotify.")

    # -- Access tokens --

    async def get_valid_access_token(self):
        """A usable access token, or None if the remote backend is unusable right now."""
        if not self.tokens.access_token or self.revoked:
            return None
        if self._clock() < self.tokens.expires_at_ms - SKEW_MS:
            return self.tokens.access_token

        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._refresh())
        # Shielded so one cancelled caller cannot abort the shared refresh
        return await asyncio.shield(self._refresh_task)

    async def _refresh(self):
        generation = self._generation
        client_id = self.settings.client_id
        refresh_token = self.tokens.refresh_token
        if not client_id or not refresh_token:
            self._mark_revoked("no refresh token or client id")
            return None

        loop = asyncio.get_running_loop()
        try:
            data = await loop.run_in_executor(
                None, pkce.refresh_access_token, client_id, refresh_token, self.token_url)
        except urllib.error.HTTPError as e:
            if generation != self._generation:
                log.info("Token refresh superseded, ignoring HTTP %d", e.code)
            elif e.code in (400, 401):
                self._mark_revoked(self._error_code(e) or f"HTTP {e.code}")
            else:
                log.warning("Token refresh failed (HTTP %d) — retrying on next use", e.code)
            return None
        except (urllib.error.URLError, OSError, ValueError) as e:
            log.warning("Token refresh failed: %s — retrying on next use", e)
            return None

        if generation != self._generation:
            log.info("Token refresh superseded, dropping result")
            return None
        if not isinstance(data, dict):
            log.warning("Token refresh returned %s, not an object — retrying on next use",
                        type(data).__name__)
            return None
        if not data.get("access_token"):
            self._mark_revoked(data.get("error") or "no access token in response")
            return None

        try:
            tokens = self._token_set(data, data.get("refresh_token") or refresh_token)
        except ValueError as e:
            log.warning("Token refresh response malformed (%s) — retrying on next use", e)
            return None
        if not await self._persist(tokens, generation):
            log.info("Token refresh superseded, dropping result")
            return None
        if tokens.refresh_token != refresh_token:
            log.info("Refresh token rotated")
        log.info("Access token refreshed (expires in %ds)",
                 (tokens.expires_at_ms - self._clock()) // 1000)
        return tokens.access_token

    # -- Helpers --

    def _supersede(self):
        """Invalidate any in-flight refresh.  Returns the new generation."""
        self._generation += 1
        self._refresh_task = None
        return self._generation

    def _token_set(self, data, refresh_token):
        """Raises ValueError when the response fields have the wrong type."""
        access_token = data["access_token"]
        if not isinstance(access_token, str):
            raise ValueError("access_token is not a string")
        if not isinstance(refresh_token, str):
            raise ValueError("refresh_token is not a string")
        expires_in = data.get("expires_in") or 3600
        if (isinstance(expires_in, bool) or not isinstance(expires_in, (int, float))
                or not math.isfinite(expires_in)):
            raise ValueError(f"expires_in is not a number: {expires_in!r}")
        return TokenSet(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at_ms=self._clock() + int(expires_in * 1000),
        )

    async def _persist(self, tokens, generation):
        """Write *tokens* to the store, then make them current.

        Returns False when *generation* was superseded before or during the
        save.  Saves are serialized, so a newer generation always writes last.
        """
        async with self._persist_lock:
            if generation != self._generation:
                return False
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, self._save, tokens)
            except OSError as e:
                log.error("Could not save Spotify tokens (%s) — using them from memory only", e)
            if generation != self._generation:
                return False
            self.tokens = tokens
            return True

    def _mark_revoked(self, reason):
        self.revoked = True
        log.error("Spotify token refresh rejected (%s) — re-authentication required", reason)
        self._emit("warning", "Spotify session expired. Please reconnect.")

    @staticmethod
    def _error_code(exc):
        try:
            body = json.loads(exc.read().decode())
            return body.get("error", "")
        except Exception:
            return ""

    def _emit(self, level, message):
        if self._notify:
            self._notify(Notice(level, message))
