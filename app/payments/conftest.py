"""
Pytest fixtures shared by the payments test packages.

Provides users, a promotion request with its accepted creator, payments
in each state, and a mocked Stripe adapter wired into every service.
Builders for adapter results and webhook payloads live in
payments.tests.factories.

Usage:
    def test_release(completed_payment, mock_stripe_adapter, seller):
        mock_stripe_adapter.create_transfer.return_value = make_transfer(...)
        result = EscrowReleaseService.release_escrow(completed_payment.id, seller)
"""

from unittest.mock import MagicMock

import pytest
from rest_framework.test import APIClient

from authentication.tests.factories import CreatorFactory, SellerFactory, UserFactory
from campaigns.tests.factories import PromotionRequestFactory
from payments.services import (
    AccountLinkingService,
    EscrowReleaseService,
    EscrowSessionService,
    ReconciliationService,
)
from payments.tests.factories import PayeeAccountFactory, PaymentFactory


# =============================================================================
# Users
# =============================================================================


@pytest.fixture
def api_client():
    """Unauthenticated DRF test client."""
    return APIClient()


@pytest.fixture
def seller(db):
    return SellerFactory()


@pytest.fixture
def other_seller(db):
    return SellerFactory()


@pytest.fixture
def creator(db):
    return CreatorFactory()


@pytest.fixture
def platform_admin(db):
    return UserFactory(is_staff=True)


# =============================================================================
# Promotion and Payee
# =============================================================================


@pytest.fixture
def payee_account(db, creator):
    """Onboarded payee account for the creator."""
    return PayeeAccountFactory(user=creator, stripe_account_id="acct_creator_123")


@pytest.fixture
def promotion(db, seller, creator):
    """Accepted promotion request, budget 10.00 to 50.00."""
    return PromotionRequestFactory(seller=seller, accepted_creator=creator)


@pytest.fixture
def escrow_metadata(promotion, creator):
    return {"promotion_id": str(promotion.id), "creator_id": str(creator.pk)}


# =============================================================================
# Payments
# =============================================================================


@pytest.fixture
def pending_payment(db, seller, escrow_metadata):
    return PaymentFactory(
        payer=seller,
        metadata=escrow_metadata,
        stripe_session_id="cs_test_pending",
    )


@pytest.fixture
def completed_payment(db, seller, escrow_metadata):
    return PaymentFactory(
        completed=True,
        payer=seller,
        metadata=escrow_metadata,
        stripe_session_id="cs_test_completed",
        stripe_charge_id="pi_test_completed",
    )


# =============================================================================
# Stripe Adapter
# =============================================================================


@pytest.fixture
def mock_stripe_adapter():
    """
    MagicMock standing in for StripeAdapter in every payment service.

    find_transfer_for_payment returns None by default so releases go on
    to create a transfer.
    """
    adapter = MagicMock()
    adapter.find_transfer_for_payment.return_value = None
    adapter.list_recent_checkout_sessions.return_value = []

    services = (
        AccountLinkingService,
        EscrowSessionService,
        EscrowReleaseService,
        ReconciliationService,
    )
    for service in services:
        service.set_stripe_adapter(adapter)
    yield adapter
    for service in services:
        service.set_stripe_adapter(None)
