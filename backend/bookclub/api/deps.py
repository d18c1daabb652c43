from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from bookclub.core.cookies import CSRF_COOKIE_NAME, SESSION_COOKIE_NAME
from bookclub.core.errors import SessionRejected
from bookclub.core.security import secrets_match
from bookclub.core.settings import get_settings
from bookclub.core.time import utcnow
from bookclub.db.session import get_db
from bookclub.models.session import Session as DbSession
from bookclub.models.user import User
from bookclub.providers.oidc import OidcClient
from bookclub.repos.sessions import touch_session
from bookclub.repos.users import get_user_by_id
from bookclub.services.sessions import parse_credential, verify


@dataclass(frozen=True)
class AuthContext:
    user: User
    session: DbSession


@lru_cache
def get_oidc_client() -> OidcClient:
    return OidcClient.from_settings(get_settings())


def _presented_credential(request: Request) -> str | None:
    raw = request.cookies.get(SESSION_COOKIE_NAME)
    if raw:
        return raw
    header = request.headers.get("authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


def get_auth_ctx(request: Request, db: Session = Depends(get_db)) -> AuthContext:
    raw = _presented_credential(request)
    if not raw:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    # Not-found, wrong secret and expired all look the same from outside.
    try:
        p1, p2 = parse_credential(raw)
        sess = verify(db, p1, p2)
    except SessionRejected as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.public_message) from e

    user = get_user_by_id(db, sess.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=SessionRejected.public_message)

    touch_session(db, sess.id, now=utcnow())
    return AuthContext(user=user, session=sess)


def get_current_user_id(auth: AuthContext = Depends(get_auth_ctx)) -> int:
    return auth.user.id


def require_csrf(request: Request, auth: AuthContext = Depends(get_auth_ctx)) -> None:
    # Bearer-token callers don't carry ambient cookies, so there is nothing to forge.
    if request.cookies.get(SESSION_COOKIE_NAME) is None:
        return

    # Double-submit cookie: require a header equal to the CSRF cookie value.
    cookie = request.cookies.get(CSRF_COOKIE_NAME) or ""
    header = request.headers.get("x-csrf-token") or ""
    if not cookie or not header or not secrets_match(cookie, header) or not secrets_match(header, auth.session.csrf_token):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="CSRF check failed")

    # Bind requests to the configured web origin when present.
    settings = get_settings()
    origin = request.headers.get("origin")
    if origin is not None and origin != settings.web_base_url:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Origin check failed")
