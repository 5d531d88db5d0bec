"""Pytest configuration and fixtures."""

import os
import uuid
from collections.abc import AsyncGenerator
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set test environment before importing app
os.environ["TESTING"] = "1"
os.environ["JWT_SECRET"] = "test-signing-secret-0123456789abcdef0123456789"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["TOKEN_HASH_TIME_COST"] = "1"
os.environ["TOKEN_HASH_MEMORY_COST"] = "64"
os.environ["TOKEN_HASH_PARALLELISM"] = "1"
os.environ["RATE_LIMIT_ENABLED"] = "0"
os.environ["RATE_LIMIT_STORAGE_URI"] = "memory://"
os.environ["REFRESH_COOKIE_SECURE"] = "0"

from sessionvault.auth.access_token import AccessTokenIssuer
from sessionvault.auth.authorization import AuthorizationEvaluator
from sessionvault.auth.credentials import hash_password
from sessionvault.auth.store import SessionStore
from sessionvault.config import get_settings
from sessionvault.db.base import Base
from sessionvault.db.session import build_session_factory
from sessionvault.db.types import utcnow
from sessionvault.main import create_app
from sessionvault.models import User, UserPermission

TEST_PASSWORD = "correct horse battery staple"


def _serialize_writers(engine) -> None:
    """Take SQLite's write lock at BEGIN so concurrent writers queue instead of failing."""

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create test database engine (file-backed so sessions get separate connections)."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'sessionvault.db'}",
        connect_args={"timeout": 30},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def serialized_engine(tmp_path):
    """Engine whose transactions start with BEGIN IMMEDIATE, for racing writers."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'sessionvault-race.db'}",
        connect_args={"timeout": 30},
    )
    _serialize_writers(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def issuer(session_factory) -> AccessTokenIssuer:
    return AccessTokenIssuer(session_factory, get_settings())


@pytest.fixture
def store(session_factory, issuer) -> SessionStore:
    return SessionStore(session_factory, issuer, timeout_seconds=10)


@pytest.fixture
def evaluator(issuer, store) -> AuthorizationEvaluator:
    return AuthorizationEvaluator(issuer, store)


@pytest.fixture
def user_factory(session_factory):
    """Insert a user with a known password and optional explicit grants."""

    async def _create(
        role: str = "PARTICIPANT",
        email: str | None = None,
        permissions: tuple[str, ...] = (),
        name: str | None = "Test User",
    ) -> User:
        user = User(
            id=uuid.uuid4(),
            email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
            name=name,
            role=role,
            password_hash=hash_password(TEST_PASSWORD),
        )
        async with session_factory() as db, db.begin():
            db.add(user)
            await db.flush()
            for permission in permissions:
                db.add(UserPermission(user_id=user.id, permission=permission))
        return user

    return _create


@pytest.fixture
def backdate(session_factory):
    """Move timestamp columns of one row into the past."""

    async def _backdate(model, row_id, *columns: str, delta: timedelta = timedelta(seconds=1)):
        past = utcnow() - delta
        async with session_factory() as db, db.begin():
            row = await db.get(model, row_id)
            for column in columns:
                setattr(row, column, past)

    return _backdate


@pytest.fixture
def app(session_factory):
    return create_app(session_factory=session_factory)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with mocked Valkey."""
    # Mock Valkey client
    mock_redis = AsyncMock()
    mock_redis.rpush.return_value = 1
    mock_redis.llen.return_value = 0

    async def mock_get_valkey():
        return mock_redis

    with patch("sessionvault.valkey.get_valkey", mock_get_valkey):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac


@pytest.fixture
def login(client):
    """Log a user in through the API and return the token pair payload."""

    async def _login(email: str, **extra) -> dict:
        response = await client.post(
            "/api/v1/auth/login", json={"email": email, "password": TEST_PASSWORD, **extra}
        )
        assert response.status_code == 200, response.text
        return response.json()

    return _login
