"""Split-credential sessions.

A credential is ``p1`` (public, indexed lookup key) plus ``p2`` (secret). The
database keeps p1 and an HMAC of p2. Verification looks the row up by p1 and
compares HMAC digests with ``hmac.compare_digest`` so the time taken does not
depend on how much of p2 an attacker guessed right.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bookclub.core.errors import SessionExpired, SessionNotFound
from bookclub.core.security import (
    default_session_expiry,
    hash_session_secret,
    new_csrf_token,
    new_session_token_pair,
    secrets_match,
)
from bookclub.core.time import as_aware_utc, utcnow
from bookclub.models.session import Session as DbSession
from bookclub.repos.sessions import (
    create_session,
    delete_all_sessions_for_user,
    delete_session_by_p1,
    get_session_by_p1,
)

logger = logging.getLogger(__name__)

CREDENTIAL_SEPARATOR = "_"
_ISSUE_ATTEMPTS = 3


@dataclass(frozen=True)
class Credential:
    p1: str
    p2: str
    csrf_token: str
    expires_at: datetime

    def __repr__(self) -> str:
        # Keep p2 out of tracebacks and debug logs.
        return f"Credential(p1={self.p1!r}, expires_at={self.expires_at.isoformat()})"

    @property
    def token(self) -> str:
        return format_credential(self.p1, self.p2)


def format_credential(p1: str, p2: str) -> str:
    return f"{p1}{CREDENTIAL_SEPARATOR}{p2}"


def parse_credential(raw: str) -> tuple[str, str]:
    # Both halves are hex, so the first separator always ends p1.
    p1, sep, p2 = raw.strip().partition(CREDENTIAL_SEPARATOR)
    if not sep or not p1 or not p2:
        raise SessionNotFound()
    return p1, p2


def issue(db: Session, user_id: int, *, now: datetime | None = None) -> Credential:
    if now is None:
        now = utcnow()
    expires_at = default_session_expiry(now)

    for attempt in range(1, _ISSUE_ATTEMPTS + 1):
        p1, p2 = new_session_token_pair()
        csrf_token = new_csrf_token()
        try:
            create_session(
                db,
                user_id=user_id,
                session_token_p1=p1,
                session_token_p2_hash=hash_session_secret(p2),
                csrf_token=csrf_token,
                created_at=now,
                expires_at=expires_at,
            )
        except IntegrityError:
            db.rollback()
            # Only a p1 collision is retried; anything else is a real failure.
            if get_session_by_p1(db, p1) is None:
                raise
            logger.warning("Session key collision on attempt %d; regenerating", attempt)
            continue
        logger.info("Issued session p1=%s for user id=%s", p1, user_id)
        return Credential(p1=p1, p2=p2, csrf_token=csrf_token, expires_at=expires_at)

    raise RuntimeError("Could not allocate a unique session key")


def verify(db: Session, p1: str, p2: str, *, now: datetime | None = None) -> DbSession:
    sess = get_session_by_p1(db, p1)
    if sess is None:
        raise SessionNotFound()

    if not secrets_match(sess.session_token_p2_hash, hash_session_secret(p2)):
        raise SessionNotFound()

    if now is None:
        now = utcnow()
    if as_aware_utc(sess.expires_at) <= now:
        # Lazy expiry: the row goes away the first time anyone presents it late.
        delete_session_by_p1(db, p1)
        logger.info("Removed expired session p1=%s", p1)
        raise SessionExpired()

    return sess


def authenticate(db: Session, p1: str, p2: str, *, now: datetime | None = None) -> int:
    return verify(db, p1, p2, now=now).user_id


def revoke(db: Session, p1: str) -> None:
    if delete_session_by_p1(db, p1):
        logger.info("Revoked session p1=%s", p1)


def revoke_all_for_user(db: Session, user_id: int) -> int:
    count = delete_all_sessions_for_user(db, user_id=user_id)
    logger.info("Revoked %d sessions for user id=%s", count, user_id)
    return count
