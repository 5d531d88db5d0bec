"""FastAPI dependencies for the session authority components."""

from fastapi import Request

from .access_token import AccessTokenIssuer
from .authorization import AuthorizationEvaluator
from .store import SessionStore


def get_issuer(request: Request) -> AccessTokenIssuer:
    return request.app.state.issuer


def get_store(request: Request) -> SessionStore:
    return request.app.state.store


def get_evaluator(request: Request) -> AuthorizationEvaluator:
    return request.app.state.evaluator


def get_client_hints(request: Request) -> tuple[str | None, str | None]:
    """Client IP (first X-Forwarded-For hop, then X-Real-IP, then peer) and user agent."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip() or None
    else:
        ip_address = request.headers.get("X-Real-IP") or (
            request.client.host if request.client else None
        )
    return ip_address, request.headers.get("User-Agent")
