"""Tests for AccessTokenIssuer."""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from jose import jwt

from sessionvault.auth.access_token import AccessTokenIssuer
from sessionvault.config import Settings, get_settings
from sessionvault.db.session import build_session_factory
from sessionvault.errors import ConfigurationFailure, Unauthenticated
from sessionvault.models import TokenBlacklist


def _forge(claims: dict, secret: str | None = None) -> str:
    settings = get_settings()
    return jwt.encode(claims, secret or settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def _claims(**overrides) -> dict:
    now = datetime.now(UTC)
    claims = {
        "iss": get_settings().JWT_ISSUER,
        "sub": str(uuid.uuid4()),
        "sid": str(uuid.uuid4()),
        "jti": str(uuid.uuid4()),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=5)).timestamp()),
        "role": "PARTICIPANT",
        "permissions": ["session:read"],
    }
    claims.update(overrides)
    return {k: v for k, v in claims.items() if v is not None}


class TestIssue:
    @pytest.mark.asyncio
    async def test_issue_and_verify(self, issuer: AccessTokenIssuer):
        user_id, session_id = uuid.uuid4(), uuid.uuid4()
        issued = issuer.issue(
            user_id,
            session_id,
            "CREATOR",
            ["project:create"],
            timedelta(minutes=15),
            name="Ada",
            email="ada@example.com",
        )

        claims = await issuer.verify(issued.token)
        assert claims.sub == str(user_id)
        assert claims.sid == str(session_id)
        assert claims.jti == issued.jti
        assert claims.role == "CREATOR"
        assert claims.permissions == ["project:create"]
        assert claims.name == "Ada"
        assert claims.iss == get_settings().JWT_ISSUER
        assert claims.expires_at == issued.expires_at

    def test_jti_unique_per_token(self, issuer: AccessTokenIssuer):
        a = issuer.issue(uuid.uuid4(), uuid.uuid4(), "ADMIN", [], timedelta(minutes=10))
        b = issuer.issue(uuid.uuid4(), uuid.uuid4(), "ADMIN", [], timedelta(minutes=10))
        assert a.jti != b.jti

    def test_expiry_follows_ttl(self, issuer: AccessTokenIssuer):
        before = datetime.now(UTC)
        issued = issuer.issue(uuid.uuid4(), uuid.uuid4(), "ADMIN", [], timedelta(minutes=10))
        assert timedelta(minutes=9) < issued.expires_at - before <= timedelta(minutes=10, seconds=1)

    def test_rejects_missing_secret(self, session_factory):
        settings = Settings()
        settings.JWT_SECRET = ""
        with pytest.raises(ConfigurationFailure):
            AccessTokenIssuer(session_factory, settings)


class TestVerify:
    @pytest.mark.asyncio
    async def test_rejects_expired(self, issuer: AccessTokenIssuer):
        past = datetime.now(UTC) - timedelta(minutes=1)
        token = _forge(_claims(exp=int(past.timestamp())))
        with pytest.raises(Unauthenticated):
            await issuer.verify(token)

    @pytest.mark.asyncio
    async def test_rejects_wrong_signature(self, issuer: AccessTokenIssuer):
        token = _forge(_claims(), secret="another-secret-another-secret-another")
        with pytest.raises(Unauthenticated):
            await issuer.verify(token)

    @pytest.mark.asyncio
    async def test_rejects_wrong_issuer(self, issuer: AccessTokenIssuer):
        token = _forge(_claims(iss="someone.else"))
        with pytest.raises(Unauthenticated):
            await issuer.verify(token)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["sub", "sid", "jti"])
    async def test_rejects_missing_required_claim(self, issuer: AccessTokenIssuer, missing: str):
        claims = _claims()
        del claims[missing]
        with pytest.raises(Unauthenticated):
            await issuer.verify(_forge(claims))

    @pytest.mark.asyncio
    async def test_rejects_garbage(self, issuer: AccessTokenIssuer):
        with pytest.raises(Unauthenticated):
            await issuer.verify("not.a.jwt")

    @pytest.mark.asyncio
    async def test_same_message_for_every_failure(self, issuer: AccessTokenIssuer):
        messages = set()
        for token in ("garbage", _forge(_claims(iss="x")), _forge({"sub": "only"})):
            with pytest.raises(Unauthenticated) as exc_info:
                await issuer.verify(token)
            messages.add(str(exc_info.value))
        assert len(messages) == 1


class TestDenylist:
    @pytest.mark.asyncio
    async def test_denylisted_jti_fails(self, issuer: AccessTokenIssuer):
        issued = issuer.issue(uuid.uuid4(), uuid.uuid4(), "PARTICIPANT", [], timedelta(minutes=15))
        await issuer.verify(issued.token)

        await issuer.blacklist(issued.jti, issued.expires_at)

        with pytest.raises(Unauthenticated):
            await issuer.verify(issued.token)

    @pytest.mark.asyncio
    async def test_blacklist_is_idempotent(self, issuer: AccessTokenIssuer, session_factory):
        jti = str(uuid.uuid4())
        expires_at = datetime.now(UTC) + timedelta(minutes=5)
        await issuer.blacklist(jti, expires_at)
        await issuer.blacklist(jti, expires_at + timedelta(minutes=1))

        async with session_factory() as db:
            record = await db.get(TokenBlacklist, jti)
        assert record.expires_at == expires_at + timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_denylist_hit_is_refused(self, issuer: AccessTokenIssuer):
        issued = issuer.issue(uuid.uuid4(), uuid.uuid4(), "PARTICIPANT", [], timedelta(minutes=15))
        with patch.object(
            AccessTokenIssuer, "_is_denylisted", AsyncMock(return_value=True)
        ), pytest.raises(Unauthenticated):
            await issuer.verify(issued.token)

    @pytest.mark.asyncio
    async def test_broken_store_counts_as_denylisted(self, db_engine):
        issued_by = AccessTokenIssuer(build_session_factory(db_engine), get_settings())
        issued = issued_by.issue(uuid.uuid4(), uuid.uuid4(), "PARTICIPANT", [], timedelta(minutes=5))

        async with db_engine.begin() as conn:
            await conn.exec_driver_sql("DROP TABLE token_blacklist")

        with pytest.raises(Unauthenticated):
            await issued_by.verify(issued.token)

    @pytest.mark.asyncio
    async def test_purge_expired(self, issuer: AccessTokenIssuer, session_factory):
        now = datetime.now(UTC)
        await issuer.blacklist("old", now - timedelta(minutes=1))
        await issuer.blacklist("live", now + timedelta(minutes=5))

        assert await issuer.purge_expired_blacklist() == 1

        async with session_factory() as db:
            assert await db.get(TokenBlacklist, "old") is None
            assert await db.get(TokenBlacklist, "live") is not None
