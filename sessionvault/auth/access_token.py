"""Access tokens: short-lived signed claims bound to a session."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sessionvault.config import MIN_SECRET_LENGTH, Settings, get_settings
from sessionvault.errors import ConfigurationFailure, Unauthenticated
from sessionvault.models import TokenBlacklist

from .permissions import UserRole

logger = logging.getLogger(__name__)


class AccessTokenClaims(BaseModel):
    """Claims carried by an access token.

    ``sub``, ``sid``, ``jti`` and ``exp`` are required; a token missing any of
    them is rejected rather than read as falsy.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    sub: str
    sid: str
    jti: str
    exp: int
    iat: int | None = None
    iss: str | None = None
    role: str | None = None
    permissions: list[str] = []
    name: str | None = None
    email: str | None = None

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, UTC)


@dataclass(frozen=True)
class IssuedAccessToken:
    token: str
    jti: str
    expires_at: datetime


class AccessTokenIssuer:
    """Signs and verifies access tokens and owns the ``jti`` denylist."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        if not settings.JWT_SECRET or len(settings.JWT_SECRET) < MIN_SECRET_LENGTH:
            raise ConfigurationFailure("JWT signing secret is not configured")

        self._session_factory = session_factory
        self._secret = settings.JWT_SECRET
        self._algorithm = settings.JWT_ALGORITHM
        self._issuer = settings.JWT_ISSUER
        self._lookup_timeout = settings.STORE_TIMEOUT_SECONDS

    def issue(
        self,
        user_id: uuid.UUID | str,
        session_id: uuid.UUID | str,
        role: UserRole | str,
        permissions: list[str],
        ttl: timedelta,
        name: str | None = None,
        email: str | None = None,
    ) -> IssuedAccessToken:
        """Create a signed access token for ``session_id`` expiring after ``ttl``."""
        jti = str(uuid.uuid4())
        issued_at = datetime.now(UTC)
        expires_at = issued_at + ttl
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "sub": str(user_id),
            "sid": str(session_id),
            "jti": jti,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "role": str(role),
            "permissions": list(permissions),
        }
        if name:
            payload["name"] = name
        if email:
            payload["email"] = email

        token = jwt.encode(payload, self._secret, algorithm=self._algorithm)
        return IssuedAccessToken(
            token=token,
            jti=jti,
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
        )

    async def verify(self, token: str) -> AccessTokenClaims:
        """Validate a bearer token and return its claims.

        Every failure raises the same ``Unauthenticated`` so callers cannot
        learn why a token was refused.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                options={"require_exp": True, "require_sub": True, "require_jti": True},
            )
            claims = AccessTokenClaims.model_validate(payload)
        except (JWTError, ValidationError) as e:
            logger.debug("Access token rejected: %s", e)
            raise Unauthenticated("invalid access token") from e

        if await self._is_denylisted(claims.jti):
            logger.warning("Denylisted access token presented (jti=%s)", claims.jti)
            raise Unauthenticated("invalid access token")

        return claims

    async def _is_denylisted(self, jti: str) -> bool:
        # Any lookup failure counts as denylisted.
        try:
            async with asyncio.timeout(self._lookup_timeout):
                async with self._session_factory() as db:
                    return await db.get(TokenBlacklist, jti) is not None
        except (SQLAlchemyError, TimeoutError) as e:
            logger.error("Denylist lookup failed, refusing token: %s", e)
            return True

    async def blacklist(self, jti: str, expires_at: datetime) -> TokenBlacklist:
        """Denylist one access token until ``expires_at``."""
        async with self._session_factory() as db, db.begin():
            record = await db.merge(TokenBlacklist(jti=jti, expires_at=expires_at))
        logger.info("Access token denylisted (jti=%s)", jti)
        return record

    async def purge_expired_blacklist(self) -> int:
        """Drop denylist entries for tokens that have expired anyway."""
        async with self._session_factory() as db, db.begin():
            result = await db.execute(
                delete(TokenBlacklist).where(TokenBlacklist.expires_at <= datetime.now(UTC))
            )
        return result.rowcount or 0
