"""Tests for the health routes."""

from unittest.mock import patch

import pytest

pytest.importorskip("fastapi")

from fastapi.testclient import TestClient

from turnstream import __version__
from turnstream.api.server import create_app
from turnstream.core.domain.errors import ConfigError


@pytest.fixture
def client():
    return TestClient(create_app())


class TestHealthRoutes:
    def test_liveness(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["version"] == __version__

    def test_readiness_with_bundled_config(self, client):
        """The packaged configuration is ready to serve."""
        response = client.get("/api/v1/health/ready")

        assert response.status_code == 200
        assert response.json()["checks"]["config"] == "ok"
        assert response.json()["checks"]["llm_config"] == "ok"

    def test_readiness_fails_on_invalid_config(self, client):
        """Config errors turn into 503 not_ready."""
        with patch("turnstream.api.routes.health.ConfigLoader") as loader:
            loader.return_value.load.side_effect = ConfigError("bad field")
            response = client.get("/api/v1/health/ready")

        assert response.status_code == 503
        assert response.json()["code"] == "not_ready"
        assert response.json()["details"]["config"] == "failed: bad field"
