from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from bookclub.core.errors import ConflictingIdentityCreation
from bookclub.models.user import User
from bookclub.providers.oidc import VerifiedIdentity
from bookclub.repos.users import create_user, get_user_by_email

logger = logging.getLogger(__name__)

PLACEHOLDER_FIRST_NAME = "Unknown"
PLACEHOLDER_LAST_NAME = "Reader"


def resolve_or_create(db: Session, identity: VerifiedIdentity) -> User:
    """Return the local user for a verified identity, creating it on first login.

    Check-then-insert races are settled by the unique email index: the loser
    of a concurrent insert gets ConflictingIdentityCreation and falls back to
    reading the winner's row.
    """
    email = identity.email.lower()
    user = get_user_by_email(db, email)
    if user is not None:
        return user

    try:
        user = create_user(
            db,
            email=email,
            first_name=(identity.given_name or "").strip() or PLACEHOLDER_FIRST_NAME,
            last_name=(identity.family_name or "").strip() or PLACEHOLDER_LAST_NAME,
        )
    except ConflictingIdentityCreation:
        logger.info("Concurrent first login for user; retrying as lookup")
        user = get_user_by_email(db, email)
        if user is None:
            raise
        return user

    logger.info("Created user id=%s on first login", user.id)
    return user
