"""
Tests for authentication app.

This package contains test modules for:
- test_models.py: User model, roles and manager tests
- test_views.py: JWT token endpoint tests
"""
