"""
Tests for the JWT token endpoints.
"""

import pytest

from authentication.tests.factories import UserFactory


@pytest.mark.django_db
class TestTokenEndpoints:
    """Tests for /api/v1/auth/token/ and /api/v1/auth/token/refresh/."""

    def test_obtain_token_pair(self, api_client):
        """Should issue access and refresh tokens for valid credentials."""
        UserFactory(email="seller@example.com", password="TestPass123!")

        response = api_client.post(
            "/api/v1/auth/token/",
            {"email": "seller@example.com", "password": "TestPass123!"},
            format="json",
        )

        assert response.status_code == 200
        assert "access" in response.data
        assert "refresh" in response.data

    def test_obtain_token_wrong_password(self, api_client):
        """Should reject invalid credentials."""
        UserFactory(email="seller@example.com", password="TestPass123!")

        response = api_client.post(
            "/api/v1/auth/token/",
            {"email": "seller@example.com", "password": "wrong"},
            format="json",
        )

        assert response.status_code == 401

    def test_access_token_authenticates_payment_history(self, api_client):
        """A bearer token should authenticate API requests."""
        UserFactory(email="seller@example.com", password="TestPass123!")
        tokens = api_client.post(
            "/api/v1/auth/token/",
            {"email": "seller@example.com", "password": "TestPass123!"},
            format="json",
        ).data

        api_client.credentials(HTTP_AUTHORIZATION=f"Bearer {tokens['access']}")
        response = api_client.get("/api/v1/payments/history")

        assert response.status_code == 200
        assert response.data == {"payments": []}

    def test_refresh_token(self, api_client):
        """Should issue a new access token from a refresh token."""
        UserFactory(email="seller@example.com", password="TestPass123!")
        tokens = api_client.post(
            "/api/v1/auth/token/",
            {"email": "seller@example.com", "password": "TestPass123!"},
            format="json",
        ).data

        response = api_client.post(
            "/api/v1/auth/token/refresh/",
            {"refresh": tokens["refresh"]},
            format="json",
        )

        assert response.status_code == 200
        assert "access" in response.data
