"""
Tests for payments app.

This package contains test modules for:
- test_models.py: Payment, PayeeAccount and WebhookEvent model tests
- test_state_transitions.py: Payment FSM transitions and write-once fields
- test_views.py: API endpoint tests
- test_tasks.py: Celery task tests
- test_integration.py: Full escrow journey through endpoints and webhooks

Usage:
    pytest payments/tests/
"""
