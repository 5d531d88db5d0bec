"""Auth session model."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sessionvault.db.base import Base
from sessionvault.db.types import UTCDateTime, utcnow

if TYPE_CHECKING:
    from sessionvault.models.refresh_token import RefreshToken


class SessionState(StrEnum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class AuthSession(Base):
    """One authenticated browser/device context.

    ``revoked_at`` only ever goes from NULL to a timestamp. ``absolute_expires_at``
    is fixed at creation and is the ceiling for every refresh token the session
    issues. Rows are kept after revocation as an audit trail.
    """

    __tablename__ = "auth_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    device_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("auth_devices.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
    )
    last_used_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
        index=True,
    )
    ip_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    ua_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    remember: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    is_admin: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    client: Mapped[str] = mapped_column(
        String(10),
        default="web",
        nullable=False,
    )
    absolute_expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
    )
    revoked_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )

    refresh_tokens: Mapped[list[RefreshToken]] = relationship(
        "RefreshToken",
        back_populates="session",
        order_by="RefreshToken.created_at",
    )

    def state(self, now: datetime) -> SessionState:
        if self.revoked_at is not None:
            return SessionState.REVOKED
        if self.absolute_expires_at <= now:
            return SessionState.EXPIRED
        return SessionState.ACTIVE
