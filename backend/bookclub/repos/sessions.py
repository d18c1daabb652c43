from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from bookclub.models.session import Session as DbSession


def create_session(
    db: Session,
    *,
    user_id: int,
    session_token_p1: str,
    session_token_p2_hash: str,
    csrf_token: str,
    created_at: datetime,
    expires_at: datetime,
) -> DbSession:
    s = DbSession(
        user_id=user_id,
        session_token_p1=session_token_p1,
        session_token_p2_hash=session_token_p2_hash,
        csrf_token=csrf_token,
        created_at=created_at,
        expires_at=expires_at,
        last_seen_at=created_at,
    )
    db.add(s)
    db.commit()
    db.refresh(s)
    return s


def get_session_by_p1(db: Session, session_token_p1: str) -> DbSession | None:
    stmt = select(DbSession).where(DbSession.session_token_p1 == session_token_p1)
    return db.execute(stmt).scalars().first()


def touch_session(db: Session, session_id: uuid.UUID, *, now: datetime) -> None:
    stmt = update(DbSession).where(DbSession.id == session_id).values(last_seen_at=now)
    db.execute(stmt)
    db.commit()


def delete_session_by_p1(db: Session, session_token_p1: str) -> bool:
    result = db.execute(delete(DbSession).where(DbSession.session_token_p1 == session_token_p1))
    db.commit()
    return bool(result.rowcount)


def delete_all_sessions_for_user(db: Session, *, user_id: int) -> int:
    result = db.execute(delete(DbSession).where(DbSession.user_id == user_id))
    db.commit()
    return result.rowcount or 0


def delete_expired_sessions(db: Session, *, now: datetime) -> int:
    result = db.execute(delete(DbSession).where(DbSession.expires_at <= now))
    db.commit()
    return result.rowcount or 0


def count_sessions_for_user(db: Session, *, user_id: int) -> int:
    stmt = select(DbSession.id).where(DbSession.user_id == user_id)
    return len(list(db.execute(stmt).scalars().all()))
