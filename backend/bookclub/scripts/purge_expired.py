from __future__ import annotations

import argparse
import logging

from bookclub.core.logging import configure_logging
from bookclub.core.settings import get_settings
from bookclub.core.time import utcnow
from bookclub.db.session import session_scope
from bookclub.repos.oauth_states import delete_expired_states
from bookclub.repos.sessions import delete_expired_sessions

logger = logging.getLogger(__name__)


def purge(db) -> tuple[int, int]:
    """Delete expired login states and sessions.

    Verification already rejects and removes expired rows on access; this only
    keeps tables from accumulating abandoned ones.
    """
    now = utcnow()
    return delete_expired_states(db, now=now), delete_expired_sessions(db, now=now)


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Delete expired login states and sessions.")
    p.add_argument("--log-level", default=None)
    args = p.parse_args(argv)

    configure_logging(args.log_level or get_settings().log_level)
    with session_scope() as db:
        states, sessions = purge(db)
    logger.info("Purged %d expired login states and %d expired sessions", states, sessions)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
