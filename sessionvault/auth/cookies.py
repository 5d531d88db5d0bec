"""Refresh-token cookie helpers."""

from datetime import datetime

from fastapi import Request, Response

from sessionvault.config import get_settings
from sessionvault.db.types import utcnow

settings = get_settings()


def set_refresh_cookie(response: Response, refresh_token: str, expires_at: datetime) -> None:
    """Issue secure HttpOnly refresh-token cookie."""
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=refresh_token,
        httponly=True,
        secure=settings.REFRESH_COOKIE_SECURE,
        samesite=settings.REFRESH_COOKIE_SAMESITE,
        path=settings.REFRESH_COOKIE_PATH,
        max_age=max(int((expires_at - utcnow()).total_seconds()), 0),
    )


def clear_refresh_cookie(response: Response) -> None:
    """Clear refresh-token cookie."""
    response.delete_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        path=settings.REFRESH_COOKIE_PATH,
        secure=settings.REFRESH_COOKIE_SECURE,
        httponly=True,
        samesite=settings.REFRESH_COOKIE_SAMESITE,
    )


def read_refresh_token(request: Request, body_token: str | None = None) -> str | None:
    """Refresh token from the JSON body, falling back to the cookie."""
    return body_token or request.cookies.get(settings.REFRESH_COOKIE_NAME)
