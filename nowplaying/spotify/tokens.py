"""
Atomic token storage for Spotify PKCE credentials.

Stores the access token, refresh token and absolute expiry in a JSON file.
Writes are atomic (temp file + rename) so a crash mid-write never corrupts
the file.  The path comes from Settings.token_path.
"""

import json
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass
class TokenSet:
    access_token: str = ""
    refresh_token: str = ""
    expires_at_ms: int = 0      # 0 = never obtained

    @property
    def empty(self) -> bool:
        return not (self.access_token or self.refresh_token)


def load_tokens(path):
    """Load tokens from disk. Returns TokenSet or None if not found."""
    try:
        with open(path) as f:
            data = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError):
        return None
    if not isinstance(data, dict):
        return None
    try:
        expires = int(data.get("expires_at_ms") or 0)
    except (TypeError, ValueError):
        expires = 0
    return TokenSet(
        access_token=data.get("access_token") or "",
        refresh_token=data.get("refresh_token") or "",
        expires_at_ms=expires,
    )


def save_tokens(tokens, path):
    """Atomically save tokens to disk."""
    data = {
        "access_token": tokens.access_token,
        "refresh_token": tokens.refresh_token,
        "expires_at_ms": tokens.expires_at_ms,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }

    # Atomic write: temp file in same directory, then rename
    d = os.path.dirname(os.path.abspath(path))
    os.makedirs(d, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=d, suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp, path)
    except Exception:
        # Clean up temp file on failure
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise

    return path
