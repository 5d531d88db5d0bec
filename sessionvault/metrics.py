"""Prometheus metrics endpoint."""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sessionvault.db.session import get_db
from sessionvault.db.types import utcnow
from sessionvault.models import AuthDevice, AuthSession, RefreshToken, TokenBlacklist, User

logger = logging.getLogger(__name__)

router = APIRouter(tags=["metrics"])


async def _count(db: AsyncSession, model, *criteria) -> int:
    result = await db.execute(select(func.count()).select_from(model).where(*criteria))
    return result.scalar() or 0


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics(db: AsyncSession = Depends(get_db)):
    """Prometheus-compatible metrics endpoint."""
    now = utcnow()
    metrics_output = []

    # User metrics
    metrics_output.append(f"sessionvault_users_total {await _count(db, User)}")
    metrics_output.append(f"sessionvault_devices_total {await _count(db, AuthDevice)}")

    # Sessions
    active_sessions = await _count(
        db,
        AuthSession,
        AuthSession.revoked_at.is_(None),
        AuthSession.absolute_expires_at > now,
    )
    metrics_output.append(f"sessionvault_active_sessions {active_sessions}")
    revoked_sessions = await _count(db, AuthSession, AuthSession.revoked_at.is_not(None))
    metrics_output.append(f"sessionvault_revoked_sessions_total {revoked_sessions}")

    # Refresh tokens by state
    issued = await _count(
        db,
        RefreshToken,
        RefreshToken.used_at.is_(None),
        RefreshToken.revoked_at.is_(None),
        RefreshToken.inactivity_expires_at > now,
        RefreshToken.absolute_expires_at > now,
    )
    rotated = await _count(db, RefreshToken, RefreshToken.used_at.is_not(None))
    revoked = await _count(
        db, RefreshToken, RefreshToken.used_at.is_(None), RefreshToken.revoked_at.is_not(None)
    )
    metrics_output.append(f'sessionvault_refresh_tokens{{state="issued"}} {issued}')
    metrics_output.append(f'sessionvault_refresh_tokens{{state="rotated"}} {rotated}')
    metrics_output.append(f'sessionvault_refresh_tokens{{state="revoked"}} {revoked}')

    # Denylisted access tokens still inside their lifetime
    denylisted = await _count(db, TokenBlacklist, TokenBlacklist.expires_at > now)
    metrics_output.append(f"sessionvault_denylisted_access_tokens {denylisted}")

    # Auth events (last 24h) - only if audit schema exists
    try:
        result = await db.execute(
            text("""
            SELECT event_type, COUNT(*)
            FROM audit.auth_events
            WHERE created_at > :since
            GROUP BY event_type
        """),
            {"since": now - timedelta(hours=24)},
        )
        for row in result.fetchall():
            metrics_output.append(f'sessionvault_auth_events_24h{{event_type="{row[0]}"}} {row[1]}')
    except SQLAlchemyError:
        # Audit schema might not exist yet
        logger.debug("audit.auth_events unavailable, skipping event metrics")

    return "\n".join(metrics_output) + "\n"
