"""Auth device model - attribution only, never a trust boundary."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from sessionvault.db.base import Base
from sessionvault.db.types import UTCDateTime, utcnow


class AuthDevice(Base):
    __tablename__ = "auth_devices"
    __table_args__ = (
        UniqueConstraint("user_id", "fingerprint", name="uq_auth_devices_user_fingerprint"),
    )

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
    fingerprint: Mapped[str] = mapped_column(
        String(256),
        nullable=False,
    )
    device_name: Mapped[str | None] = mapped_column(
        String(120),
        nullable=True,
    )
    device_type: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )
    client: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="web",
    )
    ip_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    ua_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    trusted: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    revoked_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
        index=True,
    )
