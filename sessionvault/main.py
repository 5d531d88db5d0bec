"""SessionVault - Main application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sessionvault.auth import router as auth_router
from sessionvault.auth.access_token import AccessTokenIssuer
from sessionvault.auth.authorization import AuthorizationEvaluator
from sessionvault.auth.guards import RouteGuardMiddleware
from sessionvault.auth.rate_limit import limiter
from sessionvault.auth.store import SessionStore
from sessionvault.config import Settings, get_settings
from sessionvault.db.session import build_engine, build_session_factory
from sessionvault.errors import Forbidden, TransientStoreFailure, Unauthenticated
from sessionvault.metrics import router as metrics_router
from sessionvault.sessions.router import router as sessions_router
from sessionvault.valkey import close_valkey

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    yield
    # Cleanup on shutdown
    await close_valkey()
    if app.state.engine is not None:
        await app.state.engine.dispose()


async def unauthenticated_handler(request: Request, exc: Unauthenticated):
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": Unauthenticated.public_message},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def forbidden_handler(request: Request, exc: Forbidden):
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"detail": Forbidden.public_message},
    )


async def transient_failure_handler(request: Request, exc: TransientStoreFailure):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": TransientStoreFailure.public_message},
        headers={"Retry-After": "1"},
    )


def create_app(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> FastAPI:
    """Build the application and wire its components.

    Raises ``ConfigurationFailure`` if the signing secret is unusable.
    """
    settings = settings or get_settings()
    settings.validate()
    logging.getLogger("sessionvault").setLevel(settings.LOG_LEVEL)

    engine = None
    if session_factory is None:
        engine = build_engine(settings)
        session_factory = build_session_factory(engine)

    issuer = AccessTokenIssuer(session_factory, settings)
    store = SessionStore(session_factory, issuer, timeout_seconds=settings.STORE_TIMEOUT_SECONDS)

    app = FastAPI(
        title="SessionVault",
        description="""
## Session Authority API

SessionVault issues and rotates session credentials.

### Features

- **Short-lived access tokens** bound to a server-side session
- **Single-use refresh tokens** with reuse detection
- **Role and client aware session policies**
- **Revocation** of one session or every session of a user

### Authentication Flow

1. `POST /api/v1/auth/login` with email and password
2. Use `access_token` in `Authorization: Bearer <token>` header
3. Rotate via `POST /api/v1/auth/refresh` before the access token expires
4. Replaying a used refresh token revokes the whole session
        """,
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.issuer = issuer
    app.state.store = store
    app.state.evaluator = AuthorizationEvaluator(issuer, store)

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_exception_handler(Unauthenticated, unauthenticated_handler)
    app.add_exception_handler(Forbidden, forbidden_handler)
    app.add_exception_handler(TransientStoreFailure, transient_failure_handler)

    app.add_middleware(RouteGuardMiddleware)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes - all under /api/v1
    app.include_router(auth_router, prefix=API_PREFIX)
    app.include_router(sessions_router, prefix=API_PREFIX)

    # Metrics at root level (for Prometheus scraping)
    app.include_router(metrics_router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "SessionVault",
            "version": "1.0.0",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
