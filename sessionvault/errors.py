"""Error taxonomy for the session authority.

Internal distinctions (lookup miss, hash mismatch, expiry, reuse) exist for
logging, auditing and alerting. At the HTTP boundary every ``Unauthenticated``
subclass collapses to the same 401 response.
"""

from enum import StrEnum


class ExpiryReason(StrEnum):
    """Why a session can no longer be refreshed."""

    REVOKED = "revoked"
    ABSOLUTE = "absolute"
    IDLE = "idle"


class SessionVaultError(Exception):
    """Base class for all session authority errors."""


class Unauthenticated(SessionVaultError):
    """No usable credential: the caller should log in again."""

    public_message = "Invalid or expired credentials"


class InvalidRefreshToken(Unauthenticated):
    """Presented refresh token is unknown or does not match its stored hash."""


class SessionExpired(Unauthenticated):
    """The owning session is revoked, past its absolute horizon, or idle."""

    def __init__(self, reason: ExpiryReason, message: str | None = None):
        super().__init__(message or f"session expired ({reason.value})")
        self.reason = reason


class ReuseDetected(Unauthenticated):
    """An already-consumed refresh token was presented again.

    Never returned verbatim to the client.
    """

    def __init__(self, session_id, message: str | None = None):
        super().__init__(message or "refresh token reuse detected")
        self.session_id = session_id


class Forbidden(SessionVaultError):
    """Identity is known but lacks the required role or permissions."""

    public_message = "Insufficient permissions"


class TransientStoreFailure(SessionVaultError):
    """The relational store is unavailable or timed out. Safe to retry."""

    public_message = "Service temporarily unavailable"


class ConfigurationFailure(SessionVaultError):
    """Fatal misconfiguration detected at startup."""
