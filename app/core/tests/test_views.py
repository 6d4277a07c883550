"""
Tests for the health check endpoint.
"""

from unittest.mock import patch

import pytest
from django.db import DatabaseError
from django.urls import reverse


@pytest.mark.django_db
class TestHealthCheck:
    url = reverse("health_check")

    def test_healthy(self, client):
        response = client.get(self.url)

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "database": "connected",
            "cache": "connected",
        }

    def test_database_down(self, client):
        with patch("core.views.connection.cursor", side_effect=DatabaseError("down")):
            response = client.get(self.url)

        assert response.status_code == 503
        assert response.json()["database"] == "disconnected"
        assert response.json()["status"] == "unhealthy"

    def test_cache_miss_reported_but_healthy(self, client):
        with patch("core.views.cache.get", return_value=None):
            response = client.get(self.url)

        assert response.status_code == 200
        assert response.json()["cache"] == "disconnected"

    def test_no_authentication_required(self, client):
        assert client.get(self.url).status_code == 200
