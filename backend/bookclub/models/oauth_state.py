from __future__ import annotations

import uuid
from datetime import datetime

from bookclub.core.time import utcnow

from sqlalchemy import DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from bookclub.db.base import Base


class PendingAuthState(Base):
    __tablename__ = "oauth_states"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    csrf_state: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    nonce: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    return_url: Mapped[str] = mapped_column(String(2048), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)
