"""
Contract tests for /health endpoint
Validates status codes and the dependency breakdown
"""

import pytest


class StoppedScheduler:
    is_running = False


@pytest.mark.asyncio
class TestHealthEndpoint:
    """Test /health endpoint contract"""

    async def test_health_endpoint_returns_200_when_healthy(self, client):
        """Test that /health returns 200 when all dependencies are healthy"""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert set(data["dependencies"]) == {"memory", "scheduler"}
        assert data["dependencies"]["memory"]["status"] == "up"

    async def test_health_response_fields(self, client):
        """Test that health response includes status, version, uptime and dependencies"""
        data = (await client.get("/health")).json()

        assert {"status", "uptime_seconds", "version", "dependencies"} <= set(data)
        assert data["uptime_seconds"] >= 0

    async def test_returns_503_when_store_is_down(self, client, store):
        """Test that /health returns 503 when the store is unreachable"""
        await store.disconnect()

        response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["dependencies"]["memory"]["status"] == "down"

    async def test_returns_503_when_scheduler_stopped(self, client, services):
        services.scheduler = StoppedScheduler()

        response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["dependencies"]["scheduler"]["status"] == "down"
