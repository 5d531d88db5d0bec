"""Session management router."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from sessionvault.auth.authorization import SessionUser
from sessionvault.auth.deps import get_store
from sessionvault.auth.guards import AuthorizationError, require_user
from sessionvault.auth.store import SessionStore

from .schemas import RevokeResponse, SessionListResponse, SessionResponse

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _owner_id(user: SessionUser) -> uuid.UUID:
    user_id = user.user_uuid
    if user_id is None:
        raise AuthorizationError(status.HTTP_401_UNAUTHORIZED)
    return user_id


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    include_revoked: bool = False,
    current_user: SessionUser = Depends(require_user()),
    store: SessionStore = Depends(get_store),
):
    """List sessions for current user (active only unless ``include_revoked``)."""
    sessions = await store.list_sessions(_owner_id(current_user), include_revoked=include_revoked)

    return SessionListResponse(
        sessions=[
            SessionResponse(
                id=s.id,
                device_id=s.device_id,
                client=s.client,
                remember=s.remember,
                current=str(s.id) == current_user.session_id,
                created_at=s.created_at,
                last_used_at=s.last_used_at,
                expires_at=s.absolute_expires_at,
                revoked_at=s.revoked_at,
            )
            for s in sessions
        ],
        total=len(sessions),
    )


@router.delete("/{session_id}", response_model=RevokeResponse)
async def revoke_session(
    session_id: uuid.UUID,
    current_user: SessionUser = Depends(require_user()),
    store: SessionStore = Depends(get_store),
):
    """Revoke a specific session."""
    session = await store.get_active_session(session_id)

    if session is None or session.user_id != _owner_id(current_user):
        raise HTTPException(
            status_code=404,
            detail="Session not found or already revoked"
        )

    await store.revoke_session(session_id)

    return RevokeResponse(
        message="Session revoked successfully",
        session_id=session_id,
    )


@router.delete("", response_model=RevokeResponse)
async def revoke_all_sessions(
    current_user: SessionUser = Depends(require_user()),
    store: SessionStore = Depends(get_store),
):
    """Revoke all sessions for current user."""
    count = await store.revoke_all_sessions_for_user(_owner_id(current_user))

    return RevokeResponse(
        message=f"Revoked {count} session(s)",
        revoked_count=count,
    )
