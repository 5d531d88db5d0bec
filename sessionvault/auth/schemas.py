"""Auth schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Credentials plus session options."""

    email: str = Field(..., min_length=3, max_length=255, description="Account email address")
    password: str = Field(..., min_length=1, max_length=1024, description="Account password")
    remember: bool = Field(False, description="Extend the web session horizon (ignored for admins)")
    client: str = Field("web", description="Client kind: 'web' or 'mobile'")
    device_fingerprint: str | None = Field(
        None, max_length=255, description="Stable device identifier chosen by the client"
    )
    device_label: str | None = Field(None, max_length=255, description="Human-readable device name")


class RefreshTokenRequest(BaseModel):
    """Request body for refresh token operations.

    Browsers send the refresh token as an HttpOnly cookie and may omit the body.
    """

    refresh_token: str | None = Field(None, description="The refresh token to rotate or revoke")


class SessionSummary(BaseModel):
    id: uuid.UUID = Field(..., description="Session identifier")
    expires_at: datetime = Field(..., description="Absolute session horizon")
    remember: bool
    client: str


class TokenPairResponse(BaseModel):
    """Access and refresh token pair response.

    The access token is short-lived (10-15 minutes depending on role) and used for
    API requests. The refresh token is single-use: every refresh returns a new one.
    """

    access_token: str = Field(..., description="JWT access token for API authentication")
    access_token_expires_at: datetime
    refresh_token: str = Field(..., description="Refresh token for obtaining new access tokens")
    refresh_token_expires_at: datetime
    token_type: str = Field(default="bearer", description="Token type (always 'bearer')")
    session: SessionSummary
    permissions: list[str] = Field(default_factory=list)


class MeResponse(BaseModel):
    """Current caller identity."""

    id: str
    role: str
    permissions: list[str]
    session_id: str | None = None
    name: str | None = None
    email: str | None = None


class LogoutResponse(BaseModel):
    message: str
    revoked_count: int = 0


class RevokeAccessTokenRequest(BaseModel):
    jti: str = Field(..., min_length=1, max_length=64, description="Access token id to denylist")
    expires_at: datetime = Field(..., description="When the token would expire anyway")


class RevokeAccessTokenResponse(BaseModel):
    jti: str
    expires_at: datetime
