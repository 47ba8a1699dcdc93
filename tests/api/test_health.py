"""Tests for the health check endpoint."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

from httpx import AsyncClient
from sqlalchemy.exc import OperationalError


class TestHealthCheck:
    async def test_healthy_with_database(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"] == {"postgres": "up"}
        assert data["version"] == "0.3.0"
        assert "timestamp" in data

    async def test_unhealthy_when_database_down(self, client: AsyncClient, test_app: Any) -> None:
        failing = MagicMock(side_effect=OperationalError("SELECT 1", {}, Exception("connection refused")))
        test_app.state.db_session_factory = failing

        response = await client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "unhealthy"
        assert response.json()["services"]["postgres"] == "down"

    async def test_security_headers_and_request_id(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
