"""Refresh token model."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sessionvault.db.base import Base
from sessionvault.db.types import UTCDateTime, utcnow

if TYPE_CHECKING:
    from sessionvault.models.session import AuthSession


class RefreshTokenState(StrEnum):
    ISSUED = "issued"
    ROTATED = "rotated"
    REVOKED = "revoked"
    EXPIRED = "expired"


class RefreshToken(Base):
    """One link in a session's rotation chain.

    Only the argon2 hash of the secret is stored; ``token_fingerprint`` is the
    SHA-256 lookup key. ``rotated_to_id`` points at the successor and is unique,
    so the chain cannot fork.
    """

    __tablename__ = "refresh_tokens"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("auth_sessions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    token_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    token_fingerprint: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
    )
    inactivity_expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
    )
    absolute_expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
    )
    used_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )
    rotated_to_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("refresh_tokens.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )
    revoked_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )

    session: Mapped[AuthSession] = relationship(
        "AuthSession",
        back_populates="refresh_tokens",
    )

    def state(self, now: datetime) -> RefreshTokenState:
        if self.revoked_at is not None:
            return RefreshTokenState.REVOKED
        if self.used_at is not None:
            return RefreshTokenState.ROTATED
        if now >= self.inactivity_expires_at or now >= self.absolute_expires_at:
            return RefreshTokenState.EXPIRED
        return RefreshTokenState.ISSUED
