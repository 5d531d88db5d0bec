from .access_token import AccessTokenIssuer
from .authorization import AuthorizationEvaluator
from .router import router
from .store import SessionStore

__all__ = [
    "router",
    "AccessTokenIssuer",
    "AuthorizationEvaluator",
    "SessionStore",
]
