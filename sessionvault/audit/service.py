"""Audit logging service."""

import json
import logging
import os
import uuid
from enum import StrEnum

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


def _is_testing() -> bool:
    """Check if running in test environment."""
    return os.environ.get("TESTING") == "1"


class AuthEventType(StrEnum):
    """Session lifecycle event types."""

    LOGIN_FAILED = "login_failed"
    SESSION_ISSUED = "session_issued"
    TOKEN_ROTATED = "token_rotated"
    TOKEN_REUSE_DETECTED = "token_reuse_detected"
    SESSION_IDLE_TIMEOUT = "session_idle_timeout"
    SESSION_REVOKED = "session_revoked"
    ALL_SESSIONS_REVOKED = "all_sessions_revoked"
    ACCESS_TOKEN_DENYLISTED = "access_token_denylisted"


class AuditLogger:
    """Audit logging service for session events."""

    @staticmethod
    async def log_event(
        db: AsyncSession,
        event_type: AuthEventType,
        user_id: uuid.UUID | None = None,
        session_id: uuid.UUID | None = None,
        details: dict | None = None,
        ip_hash: str | None = None,
        ua_hash: str | None = None,
    ) -> None:
        """Log an authentication event."""
        if _is_testing():
            return  # Skip audit logging in test environment

        await db.execute(
            text("""
                INSERT INTO audit.auth_events
                (user_id, session_id, event_type, details, ip_hash, ua_hash)
                VALUES (:user_id, :session_id, :event_type, CAST(:details AS JSONB), :ip_hash, :ua_hash)
            """),
            {
                "user_id": str(user_id) if user_id else None,
                "session_id": str(session_id) if session_id else None,
                "event_type": event_type.value,
                "details": json.dumps(details) if details else None,
                "ip_hash": ip_hash,
                "ua_hash": ua_hash,
            },
        )
        await db.commit()


async def record_event(
    session_factory: async_sessionmaker[AsyncSession],
    event_type: AuthEventType,
    **fields,
) -> None:
    """Write an audit event in its own transaction.

    Runs after the audited operation committed, so a failure here is logged
    and does not change that operation's outcome.
    """
    try:
        async with session_factory() as db:
            await AuditLogger.log_event(db, event_type, **fields)
    except SQLAlchemyError as e:
        logger.error("Failed to write audit event %s: %s", event_type.value, e)
