"""Identity collaborators: password verification and role/grant lookup."""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sessionvault.models import User

from .permissions import UserRole, normalize_role

logger = logging.getLogger(__name__)

_password_hasher = PasswordHasher(type=Type.ID)


@dataclass(frozen=True)
class VerifiedCredentials:
    user_id: uuid.UUID
    role: UserRole
    name: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class UserGrants:
    role: UserRole
    explicit: list[str] = field(default_factory=list)
    name: str | None = None
    email: str | None = None


def hash_password(password: str) -> str:
    return _password_hasher.hash(password)


def _check_password(password_hash: str, password: str) -> bool:
    try:
        return _password_hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


async def verify_credentials(
    db: AsyncSession, email: str, password: str
) -> VerifiedCredentials | None:
    """Return the user's identity if the email/password pair is valid."""
    result = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
    user = result.scalar_one_or_none()

    if user is None or not user.password_hash:
        return None

    if not await asyncio.to_thread(_check_password, user.password_hash, password):
        logger.info("Password verification failed for user %s", user.id)
        return None

    return VerifiedCredentials(
        user_id=user.id,
        role=normalize_role(user.role),
        name=user.name,
        email=user.email,
    )


async def load_user_grants(
    db: AsyncSession, user_id: uuid.UUID, fallback_role: UserRole | str | None = None
) -> UserGrants:
    """Current role and explicit grants; the role may have changed since login."""
    result = await db.execute(
        select(User).options(selectinload(User.permissions)).where(User.id == user_id)
    )
    user = result.scalar_one_or_none()

    if user is None:
        return UserGrants(role=normalize_role(fallback_role))

    return UserGrants(
        role=normalize_role(user.role),
        explicit=sorted(grant.permission for grant in user.permissions),
        name=user.name,
        email=user.email,
    )
