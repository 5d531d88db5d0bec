"""Authorization evaluator: bearer token first, browser session second."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from sessionvault.errors import Unauthenticated

from .access_token import AccessTokenIssuer
from .permissions import UserRole, derive_effective_permissions, has_all_permissions, normalize_role
from .store import SessionStore

logger = logging.getLogger(__name__)


class AuthorizationStatus(StrEnum):
    AUTHORIZED = "authorized"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class GuardRequirement:
    """Roles (any of) and permissions (all of) a caller must hold."""

    roles: tuple[UserRole, ...] | None = None
    permissions: tuple[str, ...] | None = None


@dataclass(frozen=True)
class AuthorizationContext:
    bearer_token: str | None = None
    # Shape: {"user": {"id", "role", "permissions", "name", "email"}}
    browser_session: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class SessionUser:
    id: str
    role: UserRole
    permissions: list[str] = field(default_factory=list)
    session_id: str | None = None
    name: str | None = None
    email: str | None = None

    @property
    def user_uuid(self) -> uuid.UUID | None:
        try:
            return uuid.UUID(self.id)
        except ValueError:
            return None


@dataclass(frozen=True)
class AuthorizationResult:
    status: AuthorizationStatus
    user: SessionUser | None = None

    @property
    def authorized(self) -> bool:
        return self.status is AuthorizationStatus.AUTHORIZED


UNAUTHENTICATED = AuthorizationResult(AuthorizationStatus.UNAUTHENTICATED)
FORBIDDEN = AuthorizationResult(AuthorizationStatus.FORBIDDEN)


def satisfies(user: SessionUser, requirement: GuardRequirement) -> bool:
    if requirement.roles and user.role not in requirement.roles:
        return False
    return has_all_permissions(user.permissions, requirement.permissions)


def user_from_browser_session(browser_session: Mapping[str, Any] | None) -> SessionUser | None:
    """Normalize the web-session collaborator's user mapping.

    The permission list is taken as given; it was derived when that session
    was established.
    """
    if not browser_session:
        return None
    raw = browser_session.get("user")
    if not raw or not raw.get("id"):
        return None
    return SessionUser(
        id=str(raw["id"]),
        role=normalize_role(raw.get("role")),
        permissions=list(raw.get("permissions") or []),
        name=raw.get("name"),
        email=raw.get("email"),
    )


class AuthorizationEvaluator:
    def __init__(self, issuer: AccessTokenIssuer, store: SessionStore):
        self._issuer = issuer
        self._store = store

    async def resolve_bearer(self, token: str) -> SessionUser | None:
        """Identity behind a bearer token, or None if it is not usable."""
        try:
            claims = await self._issuer.verify(token)
        except Unauthenticated:
            return None

        session = await self._store.get_active_session(claims.sid)
        if session is None:
            logger.info("Access token for inactive session %s refused", claims.sid)
            return None
        try:
            if session.user_id != uuid.UUID(claims.sub):
                logger.warning("Access token subject does not own session %s", claims.sid)
                return None
        except ValueError:
            return None

        role = normalize_role(claims.role)
        return SessionUser(
            id=claims.sub,
            role=role,
            permissions=derive_effective_permissions(role, claims.permissions),
            session_id=claims.sid,
            name=claims.name,
            email=claims.email,
        )

    async def evaluate(
        self, requirement: GuardRequirement, context: AuthorizationContext
    ) -> AuthorizationResult:
        if context.bearer_token:
            user = await self.resolve_bearer(context.bearer_token)
        else:
            user = user_from_browser_session(context.browser_session)

        if user is None:
            return UNAUTHENTICATED
        if not satisfies(user, requirement):
            return FORBIDDEN
        return AuthorizationResult(AuthorizationStatus.AUTHORIZED, user)
