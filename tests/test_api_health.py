"""Tests for health check endpoints."""

from unittest.mock import AsyncMock

from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from matchbank.db.database import get_session
from matchbank.main import app


class TestHealthEndpoint:
    async def test_health_returns_healthy(self, client: AsyncClient) -> None:
        """Liveness probe returns healthy."""
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_health_no_db_check(self, client: AsyncClient) -> None:
        """Health endpoint does not include database status."""
        response = await client.get("/health")

        assert response.json()["database"] is None


class TestReadyEndpoint:
    async def test_ready_with_database(self, client: AsyncClient) -> None:
        """Readiness probe reports a connected database."""
        response = await client.get("/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["database"] == "connected"

    async def test_not_ready_without_database(self, client: AsyncClient) -> None:
        """A failing database query turns readiness into a 503."""
        broken = AsyncMock()
        broken.execute.side_effect = OperationalError("SELECT 1", {}, Exception("down"))

        async def override_get_session():
            yield broken

        app.dependency_overrides[get_session] = override_get_session

        response = await client.get("/ready")

        assert response.status_code == 503
        assert response.json()["database"] == "disconnected"
