"""Health check tests."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_root(client: AsyncClient):
    """Test root endpoint."""
    response = await client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "SessionVault"
    assert "version" in data


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    """Test health check endpoint."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_docs_available(client: AsyncClient):
    """Test OpenAPI docs are available."""
    response = await client.get("/docs")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_openapi_schema(client: AsyncClient):
    """Test OpenAPI schema is available."""
    response = await client.get("/openapi.json")
    assert response.status_code == 200
    schema = response.json()
    assert schema["info"]["title"] == "SessionVault"
    assert "paths" in schema


@pytest.mark.asyncio
async def test_api_routes_are_versioned(client: AsyncClient):
    """Session authority routes live under /api/v1."""
    schema = (await client.get("/openapi.json")).json()
    assert "/api/v1/auth/refresh" in schema["paths"]
    assert "/api/v1/sessions" in schema["paths"]
    assert "/metrics" in schema["paths"]
