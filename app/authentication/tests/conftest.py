"""
Test configuration and fixtures for authentication tests.

Usage:
    def test_example(seller, api_client):
        api_client.force_authenticate(user=seller)
"""

import pytest
from rest_framework.test import APIClient

from authentication.models import User
from authentication.tests.factories import CreatorFactory, SellerFactory


@pytest.fixture
def api_client():
    """Unauthenticated DRF test client."""
    return APIClient()


@pytest.fixture
def seller(db):
    """Create a seller."""
    return SellerFactory()


@pytest.fixture
def creator(db):
    """Create a creator."""
    return CreatorFactory()


@pytest.fixture
def superuser(db):
    """Create a superuser with admin privileges."""
    return User.objects.create_superuser(
        email="admin@example.com",
        password="AdminPass123!",
    )
