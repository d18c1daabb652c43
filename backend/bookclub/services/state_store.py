"""Pending login state: CSRF state + OIDC nonce + where to send the user back.

A row exists between login start and callback. Consuming it deletes it in the
same statement, so a state value can complete at most one login.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from urllib.parse import urlsplit

from sqlalchemy.orm import Session

from bookclub.core.errors import InvalidReturnUrl, StateNotFound
from bookclub.core.security import new_random_token
from bookclub.core.settings import get_settings, parse_allowed_return_urls
from bookclub.core.time import as_aware_utc, utcnow
from bookclub.repos.oauth_states import ConsumedState, consume_state, create_state, delete_expired_states

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingLogin:
    csrf_state: str
    nonce: str
    return_url: str
    expires_at: datetime


def is_allowed_return_url(return_url: str, allowed: list[str]) -> bool:
    try:
        target = urlsplit(return_url)
    except ValueError:
        return False
    if target.scheme not in ("http", "https") or not target.netloc:
        return False

    for entry in allowed:
        base = urlsplit(entry)
        if target.scheme != base.scheme or target.netloc.lower() != base.netloc.lower():
            continue
        prefix = base.path.rstrip("/")
        if not prefix or target.path == base.path or target.path.startswith(prefix + "/"):
            return True
    return False


def begin(db: Session, return_url: str, *, now: datetime | None = None) -> PendingLogin:
    settings = get_settings()
    if not is_allowed_return_url(return_url, parse_allowed_return_urls(settings)):
        raise InvalidReturnUrl()

    if now is None:
        now = utcnow()
    expires_at = now + timedelta(minutes=settings.oauth_state_ttl_minutes)

    # Lazy cleanup of abandoned logins.
    purged = delete_expired_states(db, now=now)
    if purged:
        logger.debug("Purged %d expired login states", purged)

    csrf_state = new_random_token()
    nonce = new_random_token()
    create_state(
        db,
        csrf_state=csrf_state,
        nonce=nonce,
        return_url=return_url,
        created_at=now,
        expires_at=expires_at,
    )
    return PendingLogin(csrf_state=csrf_state, nonce=nonce, return_url=return_url, expires_at=expires_at)


def consume(db: Session, csrf_state: str, *, now: datetime | None = None) -> ConsumedState:
    if not csrf_state:
        raise StateNotFound()

    row = consume_state(db, csrf_state=csrf_state)
    if row is None:
        raise StateNotFound()

    if now is None:
        now = utcnow()
    if as_aware_utc(row.expires_at) <= now:
        # Same signal as unknown/replayed so token lifetimes can't be probed.
        logger.info("Rejected expired login state")
        raise StateNotFound()
    return row
