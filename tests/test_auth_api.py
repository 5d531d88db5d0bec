"""Tests for the auth HTTP endpoints."""

from datetime import UTC, datetime

import pytest
from httpx import AsyncClient
from jose import jwt

COOKIE = "sessionvault_refresh"


def _bearer(tokens: dict) -> dict:
    return {"Authorization": f"Bearer {tokens['access_token']}"}


def _cookie_cleared(response) -> bool:
    header = response.headers.get("set-cookie", "")
    return header.startswith(f"{COOKIE}=") and "Max-Age=0" in header


class TestLogin:
    @pytest.mark.asyncio
    async def test_success(self, client: AsyncClient, user_factory, login):
        user = await user_factory(role="CREATOR", email="Maker@Example.com")

        data = await login("maker@example.com", device_fingerprint="fp-1")

        assert data["token_type"] == "bearer"
        assert data["session"]["client"] == "web"
        assert data["session"]["remember"] is False
        assert "project:create" in data["permissions"]
        claims = jwt.get_unverified_claims(data["access_token"])
        assert claims["sub"] == str(user.id)
        assert claims["sid"] == data["session"]["id"]
        assert COOKIE in client.cookies

    @pytest.mark.asyncio
    async def test_admin_cannot_remember(self, client: AsyncClient, user_factory, login):
        admin = await user_factory(role="ADMIN")
        data = await login(admin.email, remember=True)
        assert data["session"]["remember"] is False

    @pytest.mark.asyncio
    async def test_wrong_password(self, client: AsyncClient, user_factory, login):
        user = await user_factory()
        response = await client.post(
            "/api/v1/auth/login", json={"email": user.email, "password": "nope"}
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"

    @pytest.mark.asyncio
    async def test_unknown_email_same_answer(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/auth/login", json={"email": "ghost@example.com", "password": "correct horse battery staple"}
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"


class TestRefresh:
    @pytest.mark.asyncio
    async def test_body_token_rotates(self, client: AsyncClient, user_factory, login):
        user = await user_factory()
        first = await login(user.email)
        client.cookies.clear()

        response = await client.post(
            "/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]}
        )

        assert response.status_code == 200
        second = response.json()
        assert second["refresh_token"] != first["refresh_token"]
        assert second["session"]["id"] == first["session"]["id"]
        assert client.cookies.get(COOKIE) == second["refresh_token"]

    @pytest.mark.asyncio
    async def test_cookie_token_rotates(self, client: AsyncClient, user_factory, login):
        user = await user_factory()
        first = await login(user.email)
        client.cookies.clear()

        response = await client.post(
            "/api/v1/auth/refresh", headers={"Cookie": f"{COOKIE}={first['refresh_token']}"}
        )

        assert response.status_code == 200
        assert response.json()["refresh_token"] != first["refresh_token"]

    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient):
        response = await client.post("/api/v1/auth/refresh")
        assert response.status_code == 401
        assert _cookie_cleared(response)

    @pytest.mark.asyncio
    async def test_unknown_token(self, client: AsyncClient):
        response = await client.post("/api/v1/auth/refresh", json={"refresh_token": "not-a-token"})
        assert response.status_code == 401
        assert _cookie_cleared(response)

    @pytest.mark.asyncio
    async def test_replay_kills_session(self, client: AsyncClient, user_factory, login):
        user = await user_factory()
        first = await login(user.email)
        client.cookies.clear()
        rotated = (
            await client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        ).json()

        replay = await client.post(
            "/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]}
        )
        assert replay.status_code == 401
        assert _cookie_cleared(replay)

        successor = await client.post(
            "/api/v1/auth/refresh", json={"refresh_token": rotated["refresh_token"]}
        )
        assert successor.status_code == 401
        me = await client.get("/api/v1/auth/me", headers=_bearer(rotated))
        assert me.status_code == 401


class TestLogout:
    @pytest.mark.asyncio
    async def test_logout_with_refresh_token(self, client: AsyncClient, user_factory, login):
        user = await user_factory()
        tokens = await login(user.email)

        response = await client.post(
            "/api/v1/auth/logout", json={"refresh_token": tokens["refresh_token"]}
        )

        assert response.status_code == 200
        assert response.json()["revoked_count"] == 1
        assert _cookie_cleared(response)
        assert (await client.get("/api/v1/auth/me", headers=_bearer(tokens))).status_code == 401

    @pytest.mark.asyncio
    async def test_repeat_logout_revokes_nothing(self, client: AsyncClient, user_factory, login):
        user = await user_factory()
        tokens = await login(user.email)
        body = {"refresh_token": tokens["refresh_token"]}

        first = await client.post("/api/v1/auth/logout", json=body)
        second = await client.post("/api/v1/auth/logout", json=body)

        assert first.json()["revoked_count"] == 1
        assert second.status_code == 200
        assert second.json()["revoked_count"] == 0

    @pytest.mark.asyncio
    async def test_logout_with_bearer_only(self, client: AsyncClient, user_factory, login):
        user = await user_factory()
        tokens = await login(user.email)
        client.cookies.clear()

        response = await client.post("/api/v1/auth/logout", headers=_bearer(tokens))

        assert response.json()["revoked_count"] == 1
        refresh = await client.post(
            "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )
        assert refresh.status_code == 401

    @pytest.mark.asyncio
    async def test_logout_without_credentials_is_harmless(self, client: AsyncClient):
        response = await client.post("/api/v1/auth/logout")
        assert response.status_code == 200
        assert response.json()["revoked_count"] == 0

    @pytest.mark.asyncio
    async def test_logout_all(self, client: AsyncClient, user_factory, login):
        user = await user_factory()
        web = await login(user.email)
        mobile = await login(user.email, client="mobile")

        response = await client.post("/api/v1/auth/logout/all", headers=_bearer(web))

        assert response.status_code == 200
        assert response.json()["revoked_count"] == 2
        assert (await client.get("/api/v1/auth/me", headers=_bearer(mobile))).status_code == 401

    @pytest.mark.asyncio
    async def test_logout_all_requires_auth(self, client: AsyncClient):
        response = await client.post("/api/v1/auth/logout/all")
        assert response.status_code == 401


class TestMe:
    @pytest.mark.asyncio
    async def test_me(self, client: AsyncClient, user_factory, login):
        user = await user_factory(role="PARTNER", permissions=("partner:verify",), name="Pat")
        tokens = await login(user.email)

        response = await client.get("/api/v1/auth/me", headers=_bearer(tokens))

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == str(user.id)
        assert data["role"] == "PARTNER"
        assert data["session_id"] == tokens["session"]["id"]
        assert data["name"] == "Pat"
        assert {"partner:manage", "partner:verify"} <= set(data["permissions"])

    @pytest.mark.asyncio
    async def test_me_without_token(self, client: AsyncClient):
        response = await client.get("/api/v1/auth/me")
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"


class TestRevokeAccessToken:
    @pytest.mark.asyncio
    async def test_admin_denylists_token(self, client: AsyncClient, user_factory, login):
        admin = await user_factory(role="ADMIN")
        target = await user_factory()
        admin_tokens = await login(admin.email)
        target_tokens = await login(target.email)
        claims = jwt.get_unverified_claims(target_tokens["access_token"])
        expires_at = datetime.fromtimestamp(claims["exp"], UTC).isoformat()

        response = await client.post(
            "/api/v1/auth/access-tokens/revoke",
            json={"jti": claims["jti"], "expires_at": expires_at},
            headers=_bearer(admin_tokens),
        )

        assert response.status_code == 200
        assert response.json()["jti"] == claims["jti"]
        assert (await client.get("/api/v1/auth/me", headers=_bearer(target_tokens))).status_code == 401
        # The session itself survives; a refresh yields a fresh access token.
        client.cookies.clear()
        refreshed = await client.post(
            "/api/v1/auth/refresh", json={"refresh_token": target_tokens["refresh_token"]}
        )
        assert refreshed.status_code == 200
        assert (await client.get("/api/v1/auth/me", headers=_bearer(refreshed.json()))).status_code == 200

    @pytest.mark.asyncio
    async def test_requires_admin(self, client: AsyncClient, user_factory, login):
        user = await user_factory()
        tokens = await login(user.email)
        claims = jwt.get_unverified_claims(tokens["access_token"])

        response = await client.post(
            "/api/v1/auth/access-tokens/revoke",
            json={"jti": claims["jti"], "expires_at": datetime.now(UTC).isoformat()},
            headers=_bearer(tokens),
        )
        assert response.status_code == 403
        assert response.json() == {"detail": "Insufficient permissions"}
