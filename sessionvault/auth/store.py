"""Session and refresh-token store.

Owns the ``auth_sessions`` / ``refresh_tokens`` state machine: issuance,
rotation with reuse detection, and revocation cascades. Every public call is
one or more short transactions bounded by ``asyncio.timeout``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import NoReturn

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from sessionvault.audit.alerts import SecurityAlertEmitter
from sessionvault.audit.service import AuthEventType, record_event
from sessionvault.config import get_settings
from sessionvault.db.types import utcnow
from sessionvault.errors import (
    ExpiryReason,
    InvalidRefreshToken,
    ReuseDetected,
    SessionExpired,
    TransientStoreFailure,
)
from sessionvault.models import AuthSession, RefreshToken

from .access_token import AccessTokenIssuer
from .credentials import UserGrants, load_user_grants
from .crypto import TokenHasher, fingerprint_token, get_token_hasher, hash_client_hint, new_opaque_token
from .devices import DeviceRegistry
from .permissions import UserRole, derive_effective_permissions, normalize_role
from .policy import ClientKind, resolve_session_policy

logger = logging.getLogger(__name__)

GrantsLoader = Callable[[AsyncSession, uuid.UUID, UserRole | None], Awaitable[UserGrants]]


@dataclass(frozen=True)
class IssuedSession:
    access_token: str
    access_token_expires_at: datetime
    refresh_token: str
    refresh_token_expires_at: datetime
    session: AuthSession
    refresh_record: RefreshToken
    role: UserRole
    permissions: list[str]


@dataclass(frozen=True)
class RotatedSession:
    access_token: str
    access_token_expires_at: datetime
    refresh_token: str
    refresh_token_expires_at: datetime
    session_id: uuid.UUID
    user_id: uuid.UUID
    session_expires_at: datetime
    refresh_record: RefreshToken
    role: UserRole
    permissions: list[str]
    remember: bool = False
    client: str = ClientKind.WEB.value


class _ChainAdvanced(Exception):
    """The presented token was consumed by a concurrent rotation."""


class SessionStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        issuer: AccessTokenIssuer,
        *,
        hasher: TokenHasher | None = None,
        devices: DeviceRegistry | None = None,
        grants_loader: GrantsLoader | None = None,
        timeout_seconds: float | None = None,
    ):
        self._session_factory = session_factory
        self._issuer = issuer
        self._hasher = hasher or get_token_hasher()
        self._devices = devices or DeviceRegistry(session_factory)
        self._grants_loader = grants_loader or load_user_grants
        self._timeout = timeout_seconds or get_settings().STORE_TIMEOUT_SECONDS

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            async with asyncio.timeout(self._timeout):
                yield
        except TimeoutError as e:
            logger.error("Store operation %s timed out after %ss", operation, self._timeout)
            raise TransientStoreFailure(f"{operation} timed out") from e
        except DBAPIError as e:
            logger.error("Store operation %s failed: %s", operation, e)
            raise TransientStoreFailure(f"{operation} failed") from e

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    async def issue_session(
        self,
        user_id: uuid.UUID,
        role: UserRole | str,
        *,
        remember: bool = False,
        client: ClientKind | str = ClientKind.WEB,
        ip_address: str | None = None,
        user_agent: str | None = None,
        device_fingerprint: str | None = None,
        device_label: str | None = None,
        name: str | None = None,
        email: str | None = None,
    ) -> IssuedSession:
        """Create a session and its first refresh token, and sign an access token."""
        role = normalize_role(role)
        client = ClientKind.parse(client)
        is_admin = role is UserRole.ADMIN
        remember = remember and not is_admin
        policy = resolve_session_policy(role, remember, client)
        ip_hash = hash_client_hint(ip_address)
        ua_hash = hash_client_hint(user_agent)

        async with self._guard("issue_session"):
            device_id = await self._devices.upsert(
                user_id,
                device_fingerprint,
                label=device_label,
                client=client.value,
                ip_hash=ip_hash,
                ua_hash=ua_hash,
            )

            secret = new_opaque_token()
            token_hash = await self._hasher.hash_async(secret)

            async with self._session_factory() as db:
                grants = await self._grants_loader(db, user_id, role)

            async with self._session_factory() as db:
                async with db.begin():
                    now = utcnow()
                    session = AuthSession(
                        id=uuid.uuid4(),
                        user_id=user_id,
                        device_id=device_id,
                        created_at=now,
                        last_used_at=now,
                        ip_hash=ip_hash,
                        ua_hash=ua_hash,
                        remember=remember,
                        is_admin=is_admin,
                        client=client.value,
                        absolute_expires_at=now + policy.refresh_absolute_ttl,
                    )
                    record = RefreshToken(
                        id=uuid.uuid4(),
                        session_id=session.id,
                        token_hash=token_hash,
                        token_fingerprint=fingerprint_token(secret),
                        created_at=now,
                        inactivity_expires_at=min(
                            now + policy.refresh_sliding_ttl, session.absolute_expires_at
                        ),
                        absolute_expires_at=session.absolute_expires_at,
                    )
                    db.add(session)
                    await db.flush()
                    db.add(record)

        permissions = derive_effective_permissions(role, grants.explicit)
        access = self._issuer.issue(
            user_id,
            session.id,
            role,
            permissions,
            policy.access_token_ttl,
            name=name or grants.name,
            email=email or grants.email,
        )

        logger.info("Issued session %s for user %s (client=%s)", session.id, user_id, client.value)
        await record_event(
            self._session_factory,
            AuthEventType.SESSION_ISSUED,
            user_id=user_id,
            session_id=session.id,
            details={"client": client.value, "remember": remember},
            ip_hash=ip_hash,
            ua_hash=ua_hash,
        )

        return IssuedSession(
            access_token=access.token,
            access_token_expires_at=access.expires_at,
            refresh_token=secret,
            refresh_token_expires_at=record.inactivity_expires_at,
            session=session,
            refresh_record=record,
            role=role,
            permissions=permissions,
        )

    # ------------------------------------------------------------------
    # Rotate
    # ------------------------------------------------------------------

    async def rotate_refresh_token(
        self,
        token: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> RotatedSession:
        """Exchange a refresh token for a successor and a new access token.

        Raises:
            InvalidRefreshToken: unknown token or hash mismatch
            ReuseDetected: the token was already rotated or revoked; the whole
                session has been revoked
            SessionExpired: the session is revoked, past its absolute horizon,
                or idle past the token's sliding window
        """
        ip_hash = hash_client_hint(ip_address)
        ua_hash = hash_client_hint(user_agent)

        async with self._guard("rotate_refresh_token"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(RefreshToken)
                    .options(selectinload(RefreshToken.session))
                    .where(RefreshToken.token_fingerprint == fingerprint_token(token))
                )
                record = result.scalar_one_or_none()

            if record is None:
                raise InvalidRefreshToken("unknown refresh token")

            if not await self._hasher.verify_async(token, record.token_hash):
                logger.warning("Refresh token hash mismatch for token %s", record.id)
                raise InvalidRefreshToken("refresh token hash mismatch")

            session = record.session

            if record.used_at is not None or record.revoked_at is not None:
                await self._reject_reuse(record, session)

            now = utcnow()
            if session.revoked_at is not None:
                raise SessionExpired(ExpiryReason.REVOKED)
            if session.absolute_expires_at <= now or record.absolute_expires_at <= now:
                raise SessionExpired(ExpiryReason.ABSOLUTE)

            if record.inactivity_expires_at <= now:
                await self._revoke_session_ids([session.id])
                logger.warning("Session %s idle-timed out", session.id)
                await record_event(
                    self._session_factory,
                    AuthEventType.SESSION_IDLE_TIMEOUT,
                    user_id=session.user_id,
                    session_id=session.id,
                    ip_hash=ip_hash,
                    ua_hash=ua_hash,
                )
                raise SessionExpired(ExpiryReason.IDLE)

            async with self._session_factory() as db:
                grants = await self._grants_loader(
                    db, session.user_id, UserRole.ADMIN if session.is_admin else None
                )
            role = grants.role
            policy = resolve_session_policy(
                UserRole.ADMIN if session.is_admin else role,
                session.remember,
                session.client,
            )

            secret = new_opaque_token()
            token_hash = await self._hasher.hash_async(secret)

            try:
                successor = await self._advance_chain(
                    record, session, secret, token_hash, policy.refresh_sliding_ttl, ip_hash, ua_hash
                )
            except _ChainAdvanced:
                await self._reject_reuse(record, session)

        permissions = derive_effective_permissions(role, grants.explicit)
        access = self._issuer.issue(
            session.user_id,
            session.id,
            role,
            permissions,
            policy.access_token_ttl,
            name=grants.name,
            email=grants.email,
        )

        logger.info("Rotated refresh token for session %s", session.id)
        await record_event(
            self._session_factory,
            AuthEventType.TOKEN_ROTATED,
            user_id=session.user_id,
            session_id=session.id,
            details={"from": str(record.id), "to": str(successor.id)},
            ip_hash=ip_hash,
            ua_hash=ua_hash,
        )

        return RotatedSession(
            access_token=access.token,
            access_token_expires_at=access.expires_at,
            refresh_token=secret,
            refresh_token_expires_at=successor.inactivity_expires_at,
            session_id=session.id,
            user_id=session.user_id,
            session_expires_at=session.absolute_expires_at,
            refresh_record=successor,
            role=role,
            permissions=permissions,
            remember=session.remember,
            client=session.client,
        )

    async def _advance_chain(
        self,
        record: RefreshToken,
        session: AuthSession,
        secret: str,
        token_hash: str,
        sliding_ttl,
        ip_hash: str | None,
        ua_hash: str | None,
    ) -> RefreshToken:
        """Insert the successor, claim the old token, touch the session; one transaction."""
        async with self._session_factory() as db, db.begin():
            now = utcnow()
            successor = RefreshToken(
                id=uuid.uuid4(),
                session_id=session.id,
                token_hash=token_hash,
                token_fingerprint=fingerprint_token(secret),
                created_at=now,
                inactivity_expires_at=min(now + sliding_ttl, session.absolute_expires_at),
                absolute_expires_at=session.absolute_expires_at,
            )
            db.add(successor)
            await db.flush()

            claimed = await db.execute(
                update(RefreshToken)
                .where(
                    RefreshToken.id == record.id,
                    RefreshToken.used_at.is_(None),
                    RefreshToken.revoked_at.is_(None),
                )
                .values(used_at=now, rotated_to_id=successor.id)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                raise _ChainAdvanced()

            touch: dict = {"last_used_at": now}
            if ip_hash:
                touch["ip_hash"] = ip_hash
            if ua_hash:
                touch["ua_hash"] = ua_hash
            touched = await db.execute(
                update(AuthSession)
                .where(AuthSession.id == session.id, AuthSession.revoked_at.is_(None))
                .values(**touch)
                .execution_options(synchronize_session=False)
            )
            if touched.rowcount != 1:
                raise SessionExpired(ExpiryReason.REVOKED)

        return successor

    async def _reject_reuse(self, record: RefreshToken, session: AuthSession) -> NoReturn:
        await self._revoke_session_ids([session.id])
        logger.error(
            "Refresh token reuse detected: token %s, session %s, user %s; session revoked",
            record.id,
            session.id,
            session.user_id,
        )
        await record_event(
            self._session_factory,
            AuthEventType.TOKEN_REUSE_DETECTED,
            user_id=session.user_id,
            session_id=session.id,
            details={"token_id": str(record.id)},
        )
        await SecurityAlertEmitter.emit_reuse_detected(session.user_id, session.id, record.id)
        raise ReuseDetected(session.id)

    # ------------------------------------------------------------------
    # Revoke
    # ------------------------------------------------------------------

    async def _revoke_session_ids(self, session_ids: list[uuid.UUID]) -> int:
        """Revoke sessions and their non-terminal tokens; returns sessions newly revoked."""
        if not session_ids:
            return 0
        async with self._session_factory() as db, db.begin():
            now = utcnow()
            await db.execute(
                update(RefreshToken)
                .where(
                    RefreshToken.session_id.in_(session_ids),
                    RefreshToken.used_at.is_(None),
                    RefreshToken.revoked_at.is_(None),
                )
                .values(revoked_at=now)
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(
                update(AuthSession)
                .where(AuthSession.id.in_(session_ids), AuthSession.revoked_at.is_(None))
                .values(revoked_at=now)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount or 0

    async def revoke_session(self, session_id: uuid.UUID) -> bool:
        """Revoke one session; False if it was unknown or already revoked."""
        async with self._guard("revoke_session"):
            revoked = await self._revoke_session_ids([session_id])

        if revoked:
            logger.info("Revoked session %s", session_id)
            await record_event(
                self._session_factory, AuthEventType.SESSION_REVOKED, session_id=session_id
            )
        return bool(revoked)

    async def revoke_all_sessions_for_user(self, user_id: uuid.UUID) -> int:
        """Sign a user out everywhere; returns the number of sessions revoked."""
        async with self._guard("revoke_all_sessions_for_user"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(AuthSession.id).where(
                        AuthSession.user_id == user_id,
                        AuthSession.revoked_at.is_(None),
                    )
                )
                session_ids = list(result.scalars().all())
            revoked = await self._revoke_session_ids(session_ids)

        logger.info("Revoked %d session(s) for user %s", revoked, user_id)
        await record_event(
            self._session_factory,
            AuthEventType.ALL_SESSIONS_REVOKED,
            user_id=user_id,
            details={"count": revoked},
        )
        return revoked

    async def revoke_by_refresh_token(self, token: str) -> AuthSession | None:
        """Revoke the session a refresh token belongs to (logout).

        Returns the session only if this call revoked it; None for an unknown
        or mismatched token, or a session that was already revoked.
        """
        async with self._guard("revoke_by_refresh_token"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(RefreshToken).where(
                        RefreshToken.token_fingerprint == fingerprint_token(token)
                    )
                )
                record = result.scalar_one_or_none()
            if record is None:
                return None
            if not await self._hasher.verify_async(token, record.token_hash):
                logger.warning("Logout with mismatched refresh token %s refused", record.id)
                return None

            revoked = await self._revoke_session_ids([record.session_id])
            if not revoked:
                return None

            async with self._session_factory() as db:
                session = await db.get(AuthSession, record.session_id)

        logger.info("Revoked session %s by refresh token", record.session_id)
        await record_event(
            self._session_factory,
            AuthEventType.SESSION_REVOKED,
            user_id=session.user_id if session else None,
            session_id=record.session_id,
        )
        return session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_active_session(self, session_id: uuid.UUID | str) -> AuthSession | None:
        """The session if it exists, is not revoked and is inside its absolute horizon."""
        if isinstance(session_id, str):
            try:
                session_id = uuid.UUID(session_id)
            except ValueError:
                return None

        async with self._guard("get_active_session"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(AuthSession).where(
                        AuthSession.id == session_id,
                        AuthSession.revoked_at.is_(None),
                        AuthSession.absolute_expires_at > utcnow(),
                    )
                )
                return result.scalar_one_or_none()

    async def list_sessions(
        self, user_id: uuid.UUID, include_revoked: bool = False
    ) -> list[AuthSession]:
        async with self._guard("list_sessions"):
            async with self._session_factory() as db:
                query = select(AuthSession).where(AuthSession.user_id == user_id)
                if not include_revoked:
                    query = query.where(
                        AuthSession.revoked_at.is_(None),
                        AuthSession.absolute_expires_at > utcnow(),
                    )
                result = await db.execute(query.order_by(AuthSession.last_used_at.desc()))
                return list(result.scalars().all())
