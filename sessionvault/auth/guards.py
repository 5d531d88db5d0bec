"""Route guards built on the authorization evaluator."""

import logging
import re
from dataclasses import dataclass
from urllib.parse import quote

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.middleware.base import BaseHTTPMiddleware

from sessionvault.errors import Forbidden, TransientStoreFailure

from .authorization import (
    AuthorizationContext,
    AuthorizationEvaluator,
    AuthorizationStatus,
    GuardRequirement,
    SessionUser,
    satisfies,
)
from .deps import get_evaluator
from .permissions import UserRole

logger = logging.getLogger(__name__)

SIGN_IN_ROUTE = "/auth/signin"
FORBIDDEN_ROUTE = "/forbidden"

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class RoleGuard:
    pattern: re.Pattern
    requirement: GuardRequirement


# Pages and unversioned APIs of the host application served behind this
# middleware. This service's own routes live under /api/v1 and use require_user.
ROLE_GUARDS: tuple[RoleGuard, ...] = (
    RoleGuard(re.compile(r"^/admin(?:/|$)"), GuardRequirement(roles=(UserRole.ADMIN,))),
    RoleGuard(
        re.compile(r"^/projects/new(?:/|$)"),
        GuardRequirement(roles=(UserRole.CREATOR, UserRole.ADMIN), permissions=("project:create",)),
    ),
    RoleGuard(
        re.compile(r"^/partners(?:/|$)"),
        GuardRequirement(roles=(UserRole.PARTNER, UserRole.ADMIN), permissions=("partner:manage",)),
    ),
    RoleGuard(
        re.compile(r"^/api/projects(?:/|$)"),
        GuardRequirement(roles=(UserRole.CREATOR, UserRole.ADMIN)),
    ),
    RoleGuard(
        re.compile(r"^/api/partners(?:/|$)"),
        GuardRequirement(roles=(UserRole.PARTNER, UserRole.ADMIN), permissions=("partner:manage",)),
    ),
    RoleGuard(
        re.compile(r"^/api/settlement(?:/|$)"),
        GuardRequirement(roles=(UserRole.ADMIN,), permissions=("settlement:manage",)),
    ),
)


def find_matching_guard(path: str) -> RoleGuard | None:
    for guard in ROLE_GUARDS:
        if guard.pattern.search(path):
            return guard
    return None


def is_authorized_for_guard(guard: RoleGuard, user: SessionUser | None) -> bool:
    return user is not None and satisfies(user, guard.requirement)


class AuthorizationError(HTTPException):
    """401 when the caller is unknown, 403 when known but not allowed."""

    def __init__(self, status_code: int):
        if status_code == status.HTTP_401_UNAUTHORIZED:
            super().__init__(
                status_code=status_code,
                detail="Authentication required",
                headers={"WWW-Authenticate": "Bearer"},
            )
        else:
            super().__init__(status_code=status_code, detail="Insufficient permissions")


def _context(request: Request, credentials: HTTPAuthorizationCredentials | None) -> AuthorizationContext:
    return AuthorizationContext(
        bearer_token=credentials.credentials if credentials else None,
        browser_session=request.scope.get("session"),
    )


def require_user(requirement: GuardRequirement | None = None):
    """Dependency factory: the authorized ``SessionUser``.

    Raises ``AuthorizationError`` (401) for an unknown caller and ``Forbidden``
    (403, rendered by the application handler) for an insufficient one.
    """
    requirement = requirement or GuardRequirement()

    async def dependency(
        request: Request,
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
        evaluator: AuthorizationEvaluator = Depends(get_evaluator),
    ) -> SessionUser:
        result = await evaluator.evaluate(requirement, _context(request, credentials))
        if result.status is AuthorizationStatus.UNAUTHENTICATED:
            raise AuthorizationError(status.HTTP_401_UNAUTHORIZED)
        if result.status is AuthorizationStatus.FORBIDDEN:
            raise Forbidden(f"requires {requirement}")
        return result.user

    return dependency


class RouteGuardMiddleware(BaseHTTPMiddleware):
    """Enforces ``ROLE_GUARDS`` before routing.

    API paths get JSON 401/403; page paths are redirected to sign-in or to the
    forbidden page.
    """

    async def dispatch(self, request: Request, call_next):
        guard = find_matching_guard(request.url.path)
        if guard is None:
            return await call_next(request)

        credentials = await bearer_scheme(request)
        evaluator: AuthorizationEvaluator = request.app.state.evaluator
        try:
            result = await evaluator.evaluate(guard.requirement, _context(request, credentials))
        except TransientStoreFailure as e:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"detail": e.public_message},
                headers={"Retry-After": "1"},
            )

        if result.status is AuthorizationStatus.AUTHORIZED:
            return await call_next(request)

        is_api = request.url.path.startswith("/api/")
        if result.status is AuthorizationStatus.UNAUTHENTICATED:
            if is_api:
                return JSONResponse(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    content={"detail": "Authentication required"},
                    headers={"WWW-Authenticate": "Bearer"},
                )
            callback = request.url.path
            if request.url.query:
                callback = f"{callback}?{request.url.query}"
            return RedirectResponse(
                url=f"{SIGN_IN_ROUTE}?callbackUrl={quote(callback, safe='')}",
                status_code=status.HTTP_303_SEE_OTHER,
            )

        logger.info("Forbidden access to %s", request.url.path)
        if is_api:
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"detail": "Insufficient permissions"},
            )
        return RedirectResponse(url=FORBIDDEN_ROUTE, status_code=status.HTTP_303_SEE_OTHER)
