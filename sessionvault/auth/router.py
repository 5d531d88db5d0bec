"""Auth router: login, refresh rotation, logout."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sessionvault.audit.service import AuthEventType, record_event
from sessionvault.db.session import get_session_factory
from sessionvault.errors import ReuseDetected, SessionExpired, Unauthenticated

from .access_token import AccessTokenIssuer
from .authorization import AuthorizationEvaluator, GuardRequirement, SessionUser
from .cookies import clear_refresh_cookie, read_refresh_token, set_refresh_cookie
from .credentials import verify_credentials
from .crypto import hash_client_hint
from .deps import get_client_hints, get_evaluator, get_issuer, get_store
from .guards import AuthorizationError, bearer_scheme, require_user
from .permissions import UserRole
from .rate_limit import LOGIN_LIMIT, REFRESH_LIMIT, limiter
from .schemas import (
    LoginRequest,
    LogoutResponse,
    MeResponse,
    RefreshTokenRequest,
    RevokeAccessTokenRequest,
    RevokeAccessTokenResponse,
    SessionSummary,
    TokenPairResponse,
)
from .store import SessionStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

require_admin = require_user(GuardRequirement(roles=(UserRole.ADMIN,), permissions=("admin:manage",)))


def _refresh_rejected() -> JSONResponse:
    response = JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": Unauthenticated.public_message},
        headers={"WWW-Authenticate": "Bearer"},
    )
    clear_refresh_cookie(response)
    return response


@router.post("/login", response_model=TokenPairResponse)
@limiter.limit(LOGIN_LIMIT)
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    store: SessionStore = Depends(get_store),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Verify credentials and open a new session."""
    ip_address, user_agent = get_client_hints(request)

    async with session_factory() as db:
        identity = await verify_credentials(db, body.email, body.password)
    if identity is None:
        await record_event(
            session_factory,
            AuthEventType.LOGIN_FAILED,
            ip_hash=hash_client_hint(ip_address),
            ua_hash=hash_client_hint(user_agent),
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    issued = await store.issue_session(
        identity.user_id,
        identity.role,
        remember=body.remember,
        client=body.client,
        ip_address=ip_address,
        user_agent=user_agent,
        device_fingerprint=body.device_fingerprint,
        device_label=body.device_label,
        name=identity.name,
        email=identity.email,
    )

    set_refresh_cookie(response, issued.refresh_token, issued.refresh_token_expires_at)
    return TokenPairResponse(
        access_token=issued.access_token,
        access_token_expires_at=issued.access_token_expires_at,
        refresh_token=issued.refresh_token,
        refresh_token_expires_at=issued.refresh_token_expires_at,
        session=SessionSummary(
            id=issued.session.id,
            expires_at=issued.session.absolute_expires_at,
            remember=issued.session.remember,
            client=issued.session.client,
        ),
        permissions=issued.permissions,
    )


@router.post("/refresh", response_model=TokenPairResponse)
@limiter.limit(REFRESH_LIMIT)
async def refresh_tokens(
    request: Request,
    response: Response,
    body: RefreshTokenRequest | None = None,
    store: SessionStore = Depends(get_store),
):
    """Refresh access token using refresh token (with rotation)."""
    token = read_refresh_token(request, body.refresh_token if body else None)
    if not token:
        return _refresh_rejected()

    ip_address, user_agent = get_client_hints(request)
    try:
        rotated = await store.rotate_refresh_token(
            token, ip_address=ip_address, user_agent=user_agent
        )
    except ReuseDetected:
        return _refresh_rejected()
    except SessionExpired as e:
        logger.info("Refresh refused: session expired (%s)", e.reason)
        return _refresh_rejected()
    except Unauthenticated:
        logger.info("Refresh refused: invalid refresh token")
        return _refresh_rejected()

    set_refresh_cookie(response, rotated.refresh_token, rotated.refresh_token_expires_at)
    return TokenPairResponse(
        access_token=rotated.access_token,
        access_token_expires_at=rotated.access_token_expires_at,
        refresh_token=rotated.refresh_token,
        refresh_token_expires_at=rotated.refresh_token_expires_at,
        session=SessionSummary(
            id=rotated.session_id,
            expires_at=rotated.session_expires_at,
            remember=rotated.remember,
            client=rotated.client,
        ),
        permissions=rotated.permissions,
    )


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    request: Request,
    response: Response,
    body: RefreshTokenRequest | None = None,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    store: SessionStore = Depends(get_store),
    evaluator: AuthorizationEvaluator = Depends(get_evaluator),
):
    """End the current session (refresh token first, bearer token otherwise)."""
    revoked = 0
    token = read_refresh_token(request, body.refresh_token if body else None)
    if token:
        session = await store.revoke_by_refresh_token(token)
        revoked = int(session is not None)

    if not revoked and credentials:
        user = await evaluator.resolve_bearer(credentials.credentials)
        if user and user.session_id:
            revoked = int(await store.revoke_session(uuid.UUID(user.session_id)))

    clear_refresh_cookie(response)
    return LogoutResponse(message="Logged out", revoked_count=revoked)


@router.post("/logout/all", response_model=LogoutResponse)
async def logout_all(
    response: Response,
    user: SessionUser = Depends(require_user()),
    store: SessionStore = Depends(get_store),
):
    """Revoke every session of the current user."""
    user_id = user.user_uuid
    if user_id is None:
        raise AuthorizationError(status.HTTP_401_UNAUTHORIZED)

    revoked = await store.revoke_all_sessions_for_user(user_id)
    clear_refresh_cookie(response)
    return LogoutResponse(message="Logged out from all sessions", revoked_count=revoked)


@router.get("/me", response_model=MeResponse)
async def get_me(user: SessionUser = Depends(require_user())):
    """Get current user info."""
    return MeResponse(
        id=user.id,
        role=user.role.value,
        permissions=user.permissions,
        session_id=user.session_id,
        name=user.name,
        email=user.email,
    )


@router.post("/access-tokens/revoke", response_model=RevokeAccessTokenResponse)
async def revoke_access_token(
    body: RevokeAccessTokenRequest,
    admin: SessionUser = Depends(require_admin),
    issuer: AccessTokenIssuer = Depends(get_issuer),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Denylist an access token before it expires."""
    record = await issuer.blacklist(body.jti, body.expires_at)
    await record_event(
        session_factory,
        AuthEventType.ACCESS_TOKEN_DENYLISTED,
        user_id=admin.user_uuid,
        details={"jti": body.jti},
    )
    return RevokeAccessTokenResponse(jti=record.jti, expires_at=record.expires_at)
