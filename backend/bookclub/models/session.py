from __future__ import annotations

import uuid
from datetime import datetime

from bookclub.core.time import utcnow

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from bookclub.db.base import Base


class Session(Base):
    __tablename__ = "sessions"
    __table_args__ = (CheckConstraint("expires_at > created_at", name="ck_sessions_expiry_after_creation"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), index=True, nullable=False)

    # Public lookup half of the credential.
    session_token_p1: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    # Keyed hash of the secret half; the raw value is never stored.
    session_token_p2_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    csrf_token: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
