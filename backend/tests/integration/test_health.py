"""
Integration tests for health check endpoints.
"""

import pytest
from httpx import AsyncClient


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_health_db(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health/db")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    @pytest.mark.asyncio
    async def test_readiness(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health/ready")

        data = response.json()
        assert data["ready"] is True
        assert data["billing_provider"] in ("stripe", "paddle")
        assert data["stripe"] in ("configured", "unconfigured")

    @pytest.mark.asyncio
    async def test_liveness(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health/live")

        assert response.json() == {"alive": True}

    @pytest.mark.asyncio
    async def test_security_headers(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/health/live")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "X-Request-ID" in response.headers
