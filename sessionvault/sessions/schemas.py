"""Session schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel


class SessionResponse(BaseModel):
    """Session response."""

    id: uuid.UUID
    device_id: uuid.UUID | None = None
    client: str
    remember: bool
    current: bool = False
    created_at: datetime
    last_used_at: datetime
    expires_at: datetime
    revoked_at: datetime | None = None


class SessionListResponse(BaseModel):
    """Session list response."""

    sessions: list[SessionResponse]
    total: int


class RevokeResponse(BaseModel):
    """Revoke response."""

    message: str
    session_id: uuid.UUID | None = None
    revoked_count: int | None = None
