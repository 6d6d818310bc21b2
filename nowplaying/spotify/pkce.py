"""
PKCE (Proof Key for Code Exchange) helpers for Spotify OAuth.

Uses the Authorization Code with PKCE flow — no client_secret needed.
Only requires a client_id.

Uses blocking urllib.request intentionally — callers wrap in run_in_executor().

Usage:
    from nowplaying.spotify.pkce import generate_code_verifier, generate_code_challenge
    from nowplaying.spotify.pkce import exchange_code, refresh_access_token

    verifier = generate_code_verifier()
    challenge = generate_code_challenge(verifier)
    url = build_auth_url(client_id, redirect_uri, challenge, SCOPES, state)
    # ... user completes auth flow, redirect lands on /callback ...
    tokens = exchange_code(code, client_id, verifier, redirect_uri)
    tokens = refresh_access_token(client_id, refresh_token)
"""

import base64
import hashlib
import json
import secrets
import string
import urllib.parse
import urllib.request

AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
TOKEN_URL = "https://accounts.spotify.com/api/token"

SCOPES = "user-read-playback-state user-modify-playback-state user-read-currently-playing"

_ALPHABET = string.ascii_letters + string.digits


def generate_random_string(length):
    """Random [A-Za-z0-9] string from the OS CSPRNG."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_code_verifier(length=128):
    """Generate a random code verifier string (43-128 chars, URL-safe)."""
    return generate_random_string(length)


def generate_state(length=16):
    """Generate the CSRF nonce echoed back on the redirect."""
    return generate_random_string(length)


def generate_code_challenge(verifier):
    """Generate a code challenge from a verifier (S256 method)."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def build_auth_url(client_id, redirect_uri, code_challenge, scopes, state):
    """Build the Spotify authorization URL for PKCE flow."""
    params = urllib.parse.urlencode({
        "response_type": "code",
        "client_id": client_id,
        "scope": scopes,
        "redirect_uri": redirect_uri,
        "state": state,
        "code_challenge_method": "S256",
        "code_challenge": code_challenge,
    })
    return f"{AUTHORIZE_URL}?{params}"


def _post_form(body, token_url):
    data = urllib.parse.urlencode(body).encode()
    req = urllib.request.Request(
        token_url,
        data=data,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    with urllib.request.urlopen(req, timeout=10) as resp:
        return json.loads(resp.read().decode())


def exchange_code(code, client_id, code_verifier, redirect_uri, token_url=TOKEN_URL):
    """Exchange an authorization code for access + refresh tokens.

    Returns dict with 'access_token', 'refresh_token', 'expires_in', etc.
    Raises urllib.error.HTTPError on failure.
    """
    return _post_form({
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": client_id,
        "code_verifier": code_verifier,
    }, token_url)


def refresh_access_token(client_id, refresh_token, token_url=TOKEN_URL):
    """Refresh an access token using PKCE flow (client_id in body, no secret).

    Returns dict with 'access_token', optionally 'refresh_token' (rotated).
    Raises urllib.error.HTTPError on failure.
    """
    return _post_form({
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": client_id,
    }, token_url)
