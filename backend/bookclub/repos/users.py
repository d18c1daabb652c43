from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bookclub.core.errors import ConflictingIdentityCreation
from bookclub.models.user import User


def get_user_by_email(db: Session, email: str) -> User | None:
    stmt = select(User).where(User.email == email.lower())
    return db.execute(stmt).scalars().first()


def get_user_by_id(db: Session, user_id: int) -> User | None:
    return db.get(User, user_id)


def create_user(db: Session, *, email: str, first_name: str, last_name: str) -> User:
    user = User(email=email.lower(), first_name=first_name, last_name=last_name)
    db.add(user)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictingIdentityCreation(f"User with email {email.lower()!r} already exists") from e
    db.refresh(user)
    return user


def count_users_with_email(db: Session, email: str) -> int:
    stmt = select(User.id).where(User.email == email.lower())
    return len(list(db.execute(stmt).scalars().all()))
