"""
Unit tests for health endpoint.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import pytest

from tests.factories import create_data_url

if TYPE_CHECKING:
    from fastapi.testclient import TestClient


@pytest.mark.unit
class TestHealthEndpoint:
    """Tests for GET /health."""

    def test_health_returns_200(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200

    def test_health_is_healthy_before_model_load(self, client: TestClient) -> None:
        """A lazily loaded model does not make the service unhealthy."""
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["model_loaded"] is False

    def test_health_reports_loaded_model(self, client: TestClient) -> None:
        client.post("/similarity", json={"text": "a cat", "url": create_data_url()})

        data = client.get("/health").json()

        assert data["model_loaded"] is True

    def test_health_includes_uptime(self, client: TestClient) -> None:
        data = client.get("/health").json()

        assert data["uptime_seconds"] >= 0
        assert data["uptime"].endswith("s")

    def test_health_system_time_format(self, client: TestClient) -> None:
        """System time is yyyy-mm-dd hh:mm."""
        data = client.get("/health").json()

        assert re.fullmatch(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}", data["system_time"])
