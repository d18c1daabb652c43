from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from bookclub.models.oauth_state import PendingAuthState


@dataclass(frozen=True)
class ConsumedState:
    csrf_state: str
    nonce: str
    return_url: str
    created_at: datetime
    expires_at: datetime


def create_state(
    db: Session,
    *,
    csrf_state: str,
    nonce: str,
    return_url: str,
    created_at: datetime,
    expires_at: datetime,
) -> PendingAuthState:
    row = PendingAuthState(
        csrf_state=csrf_state,
        nonce=nonce,
        return_url=return_url,
        created_at=created_at,
        expires_at=expires_at,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


_CONSUMED_COLUMNS = (
    PendingAuthState.csrf_state,
    PendingAuthState.nonce,
    PendingAuthState.return_url,
    PendingAuthState.created_at,
    PendingAuthState.expires_at,
)


def consume_state(db: Session, *, csrf_state: str) -> ConsumedState | None:
    """Delete the row for csrf_state and return what it held.

    Exactly one of any number of concurrent callers gets the row back; the
    rest see None. Expiry is left to the caller because the row must be gone
    either way.
    """
    if db.get_bind().dialect.delete_returning:
        stmt = (
            delete(PendingAuthState)
            .where(PendingAuthState.csrf_state == csrf_state)
            .returning(*_CONSUMED_COLUMNS)
            .execution_options(synchronize_session=False)
        )
        row = db.execute(stmt).first()
        db.commit()
        return ConsumedState(*row) if row is not None else None

    # No DELETE ... RETURNING: read, then let the delete's rowcount pick the winner.
    row = db.execute(select(PendingAuthState.id, *_CONSUMED_COLUMNS).where(PendingAuthState.csrf_state == csrf_state)).first()
    if row is None:
        db.rollback()
        return None
    result = db.execute(delete(PendingAuthState).where(PendingAuthState.id == row[0]))
    db.commit()
    if result.rowcount != 1:
        return None
    return ConsumedState(*row[1:])


def delete_expired_states(db: Session, *, now: datetime) -> int:
    result = db.execute(delete(PendingAuthState).where(PendingAuthState.expires_at < now))
    db.commit()
    return result.rowcount or 0


def count_states(db: Session) -> int:
    return len(list(db.execute(select(PendingAuthState.id)).scalars().all()))
