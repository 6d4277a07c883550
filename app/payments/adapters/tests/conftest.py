"""
Pytest fixtures for Stripe adapter tests.

This module provides mock Stripe API responses, error instances and patched
Stripe resources so the adapter can be exercised without network access.

Sections:
    - Mock Stripe Response Fixtures
    - Mock Stripe Error Fixtures
    - Mock Stripe Resource Fixtures
"""

import uuid
from typing import Any
from unittest.mock import patch

import pytest
import stripe

from payments.adapters.tests.factories import MockStripeList, MockStripeObject


# =============================================================================
# Mock Stripe Response Fixtures
# =============================================================================


@pytest.fixture
def payment_id():
    """Local payment ID the Stripe objects refer to."""
    return uuid.uuid4()


@pytest.fixture(autouse=True)
def no_retry_sleep():
    """Retries of transient errors must not slow the suite down."""
    with patch("payments.adapters.stripe_adapter.time.sleep") as mock:
        yield mock


@pytest.fixture
def mock_account():
    """Create a mock Connect Account response."""

    def _create(
        id: str = "acct_test123",
        email: str = "creator@example.com",
        payouts_enabled: bool = False,
        charges_enabled: bool = False,
        details_submitted: bool = False,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "account",
                "email": email,
                "payouts_enabled": payouts_enabled,
                "charges_enabled": charges_enabled,
                "details_submitted": details_submitted,
            }
        )

    return _create


@pytest.fixture
def mock_checkout_session(payment_id):
    """Create a mock Checkout Session response."""

    def _create(
        id: str = "cs_test123",
        status: str = "open",
        payment_status: str = "unpaid",
        amount_total: int = 2000,
        payment_intent: Any = None,
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "checkout.session",
                "url": f"https://checkout.stripe.com/c/pay/{id}",
                "status": status,
                "payment_status": payment_status,
                "amount_total": amount_total,
                "currency": "usd",
                "payment_intent": payment_intent,
                "client_reference_id": str(payment_id),
                "metadata": metadata if metadata is not None else {"payment_id": str(payment_id)},
                "created": 1760000000,
            }
        )

    return _create


@pytest.fixture
def mock_transfer(payment_id):
    """Create a mock Transfer response."""

    def _create(
        id: str = "tr_test123",
        amount: int = 1800,
        destination: str = "acct_dest123",
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "transfer",
                "amount": amount,
                "currency": "usd",
                "destination": destination,
                "transfer_group": str(payment_id),
                "metadata": metadata or {},
            }
        )

    return _create


# =============================================================================
# Mock Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def invalid_request_error():
    """Create a Stripe InvalidRequestError."""

    def _create(
        message: str = "Invalid checkout session ID",
        param: str | None = "id",
        code: str = "resource_missing",
    ) -> stripe.InvalidRequestError:
        return stripe.InvalidRequestError(message=message, param=param, code=code)

    return _create


@pytest.fixture
def rate_limit_error():
    """Create a Stripe RateLimitError."""
    return stripe.RateLimitError(message="Too many requests hit the API too quickly.")


@pytest.fixture
def api_connection_error():
    """Create a Stripe APIConnectionError."""
    return stripe.APIConnectionError(message="Could not connect to Stripe.")


@pytest.fixture
def timeout_error():
    """Create a Stripe APIConnectionError for a timed out request."""
    return stripe.APIConnectionError(message="Request timed out")


@pytest.fixture
def api_error():
    """Create a Stripe APIError."""
    return stripe.APIError(message="Something went wrong on Stripe's end.")


@pytest.fixture
def authentication_error():
    """Create a Stripe AuthenticationError."""
    return stripe.AuthenticationError(message="Invalid API Key provided.")


# =============================================================================
# Mock Stripe Resource Fixtures
# =============================================================================


@pytest.fixture
def mock_stripe_account(mock_account):
    """Mock stripe.Account API."""
    with patch("stripe.Account") as mock:
        mock.create.return_value = mock_account()
        yield mock


@pytest.fixture
def mock_stripe_account_link():
    """Mock stripe.AccountLink API."""
    with patch("stripe.AccountLink") as mock:
        mock.create.return_value = MockStripeObject(
            {
                "object": "account_link",
                "url": "https://connect.stripe.com/setup/e/acct_test123/abc",
                "expires_at": 1760000300,
            }
        )
        yield mock


@pytest.fixture
def mock_stripe_checkout_session(mock_checkout_session):
    """Mock stripe.checkout.Session API."""
    with patch("stripe.checkout.Session") as mock:
        mock.create.return_value = mock_checkout_session()
        mock.retrieve.return_value = mock_checkout_session()
        mock.list.return_value = MockStripeList(items=[])
        yield mock


@pytest.fixture
def mock_stripe_transfer(mock_transfer):
    """Mock stripe.Transfer API."""
    with patch("stripe.Transfer") as mock:
        mock.create.return_value = mock_transfer()
        mock.list.return_value = MockStripeList(items=[])
        yield mock


@pytest.fixture
def mock_stripe_webhook():
    """Mock stripe.Webhook signature verification."""
    with patch("stripe.Webhook") as mock:
        yield mock
