from __future__ import annotations

from datetime import datetime

from fastapi import Response

from bookclub.core.settings import get_settings
from bookclub.core.time import utcnow

SESSION_COOKIE_NAME = "bookclub_session"
CSRF_COOKIE_NAME = "bookclub_csrf"

# The session cookie is never script-readable; the CSRF cookie must be, so the
# frontend can echo it back in X-CSRF-Token.
_HTTPONLY = {SESSION_COOKIE_NAME: True, CSRF_COOKIE_NAME: False}


def cookie_max_age(expires_at: datetime, *, now: datetime | None = None) -> int:
    if now is None:
        now = utcnow()
    return max(0, int((expires_at - now).total_seconds()))


def set_auth_cookies(resp: Response, *, token: str, csrf_token: str, expires_at: datetime) -> None:
    secure = get_settings().cookie_secure
    max_age = cookie_max_age(expires_at)
    for name, value in ((SESSION_COOKIE_NAME, token), (CSRF_COOKIE_NAME, csrf_token)):
        resp.set_cookie(
            key=name,
            value=value,
            max_age=max_age,
            httponly=_HTTPONLY[name],
            secure=secure,
            samesite="lax",
            path="/",
        )


def clear_auth_cookies(resp: Response) -> None:
    secure = get_settings().cookie_secure
    for name in (SESSION_COOKIE_NAME, CSRF_COOKIE_NAME):
        resp.delete_cookie(key=name, path="/", samesite="lax", secure=secure)
