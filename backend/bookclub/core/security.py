from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta

from bookclub.core.settings import get_settings
from bookclub.core.time import utcnow

# 32 random bytes -> 256 bits, well above the 128-bit floor for states and nonces.
TOKEN_BYTES = 32


def new_random_token() -> str:
    # URL-safe so it can travel in query strings and cookies unescaped.
    return secrets.token_urlsafe(TOKEN_BYTES)


def new_session_token_pair() -> tuple[str, str]:
    # p1 is the public lookup key, p2 the secret half. Generated independently.
    # Hex keeps "_" free for joining them into one cookie value.
    return secrets.token_hex(TOKEN_BYTES), secrets.token_hex(TOKEN_BYTES)


def new_csrf_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_session_secret(secret: str) -> str:
    """Keyed hash of a session secret half.

    Only this digest is persisted, so a database dump does not yield usable
    credentials without SESSION_SECRET_KEY as well.
    """

    key = get_settings().session_secret_key.encode("utf-8")
    return hmac.new(key, secret.encode("utf-8"), hashlib.sha256).hexdigest()


def secrets_match(expected: str, presented: str) -> bool:
    # Constant-time comparison.
    return hmac.compare_digest(expected.encode("utf-8"), presented.encode("utf-8"))


def default_session_expiry(now: datetime | None = None, *, hours: int | None = None) -> datetime:
    if now is None:
        now = utcnow()
    if hours is None:
        hours = get_settings().session_ttl_hours
    return now + timedelta(hours=hours)
