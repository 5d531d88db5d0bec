from .device import AuthDevice
from .refresh_token import RefreshToken, RefreshTokenState
from .session import AuthSession, SessionState
from .token_blacklist import TokenBlacklist
from .user import User, UserPermission

__all__ = [
    "User",
    "UserPermission",
    "AuthDevice",
    "AuthSession",
    "SessionState",
    "RefreshToken",
    "RefreshTokenState",
    "TokenBlacklist",
]
