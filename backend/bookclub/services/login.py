from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from bookclub.models.user import User
from bookclub.providers.oidc import OidcClient
from bookclub.services import sessions, state_store
from bookclub.services.sessions import Credential
from bookclub.services.user_directory import resolve_or_create

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginResult:
    credential: Credential
    user: User
    return_url: str


def start_login(db: Session, client: OidcClient, return_url: str, *, now: datetime | None = None) -> str:
    # Discover the provider before persisting anything, so an unreachable
    # provider leaves no pending state behind.
    client.metadata
    pending = state_store.begin(db, return_url, now=now)
    return client.build_authorize_url(pending.csrf_state, pending.nonce, pending.return_url)


def complete_login(
    db: Session,
    client: OidcClient,
    params: Mapping[str, str | None],
    *,
    now: datetime | None = None,
) -> LoginResult:
    """Finish a login from the provider callback.

    The state is consumed before anything else, so a failed or replayed
    callback can never be retried with the same state. No session exists
    unless every step succeeded.
    """
    pending = state_store.consume(db, params.get("state") or "", now=now)
    identity = client.exchange_and_verify(params, pending.nonce)
    user = resolve_or_create(db, identity)
    credential = sessions.issue(db, user.id, now=now)
    logger.info("Login completed for user id=%s", user.id)
    return LoginResult(credential=credential, user=user, return_url=pending.return_url)
