"""
Tests for EscrowSessionService.

Tests cover:
- Opening a checkout session and recording the PENDING payment
- Amount and metadata validation
- Stripe and persistence failures
- Session status polling
"""

from unittest.mock import patch

import pytest
from django.db import DatabaseError

from payments.exceptions import StripeAPIUnavailableError, StripeInvalidRequestError
from payments.models import Payment
from payments.services import EscrowSessionService
from payments.state_machines import PaymentStatus
from payments.tests.factories import make_session


@pytest.mark.django_db
class TestCreateEscrowSession:
    def test_creates_pending_payment(self, seller, escrow_metadata, mock_stripe_adapter):
        mock_stripe_adapter.create_checkout_session.return_value = make_session("cs_test_new")

        result = EscrowSessionService.create_escrow_session(
            amount_cents=2000,
            payer=seller,
            payee_account_id="acct_creator_123",
            metadata=escrow_metadata,
        )

        assert result.success
        assert result.data.session_id == "cs_test_new"
        assert result.data.url == "https://checkout.stripe.com/c/pay/cs_test_new"

        payment = Payment.objects.get(stripe_session_id="cs_test_new")
        assert payment.id == result.data.payment.id
        assert payment.status == PaymentStatus.PENDING
        assert payment.amount_cents == 2000
        assert payment.currency == "usd"
        assert payment.payer == seller
        assert payment.metadata == escrow_metadata

    def test_session_carries_payment_id_and_metadata(
        self, seller, escrow_metadata, mock_stripe_adapter, settings
    ):
        settings.FRONTEND_URL = "https://app.example.com/"
        mock_stripe_adapter.create_checkout_session.return_value = make_session()

        result = EscrowSessionService.create_escrow_session(
            amount_cents=2000,
            payer=seller,
            payee_account_id="acct_creator_123",
            metadata=escrow_metadata,
            product_name="Launch video",
        )

        kwargs = mock_stripe_adapter.create_checkout_session.call_args.kwargs
        assert kwargs["payment_id"] == result.data.payment.id
        assert kwargs["amount_cents"] == 2000
        assert kwargs["product_name"] == "Launch video"
        assert kwargs["customer_email"] == seller.email
        assert kwargs["success_url"].startswith("https://app.example.com/payment/success")
        assert kwargs["metadata"]["kind"] == "escrow"
        assert kwargs["metadata"]["payer_id"] == str(seller.pk)
        assert kwargs["metadata"]["payee_account_id"] == "acct_creator_123"
        assert kwargs["metadata"]["promotion_id"] == escrow_metadata["promotion_id"]
        assert str(result.data.payment.id) in kwargs["idempotency_key"]

    @pytest.mark.parametrize("amount", [0, -100, True, 10.5, "2000"])
    def test_rejects_invalid_amount(self, amount, seller, escrow_metadata, mock_stripe_adapter):
        result = EscrowSessionService.create_escrow_session(
            amount_cents=amount,
            payer=seller,
            payee_account_id="acct_creator_123",
            metadata=escrow_metadata,
        )

        assert not result.success
        assert result.error_code == "VALIDATION_ERROR"
        assert "amount" in result.errors
        mock_stripe_adapter.create_checkout_session.assert_not_called()
        assert not Payment.objects.exists()

    @pytest.mark.parametrize("missing_key", ["promotion_id", "creator_id"])
    def test_rejects_missing_metadata(
        self, missing_key, seller, escrow_metadata, mock_stripe_adapter
    ):
        escrow_metadata.pop(missing_key)

        result = EscrowSessionService.create_escrow_session(
            amount_cents=2000,
            payer=seller,
            payee_account_id="acct_creator_123",
            metadata=escrow_metadata,
        )

        assert not result.success
        assert result.error_code == "VALIDATION_ERROR"
        assert missing_key in result.errors
        mock_stripe_adapter.create_checkout_session.assert_not_called()

    def test_stripe_failure_records_nothing(self, seller, escrow_metadata, mock_stripe_adapter):
        mock_stripe_adapter.create_checkout_session.side_effect = StripeInvalidRequestError(
            "Invalid currency"
        )

        result = EscrowSessionService.create_escrow_session(
            amount_cents=2000,
            payer=seller,
            payee_account_id="acct_creator_123",
            metadata=escrow_metadata,
        )

        assert not result.success
        assert result.error_code == "INVALID_STRIPE_REQUEST"
        assert not Payment.objects.exists()

    def test_persistence_failure_after_session_created(
        self, seller, escrow_metadata, mock_stripe_adapter
    ):
        mock_stripe_adapter.create_checkout_session.return_value = make_session()

        with patch(
            "payments.services.escrow_session.Payment.objects.get_or_create",
            side_effect=DatabaseError("db unavailable"),
        ):
            result = EscrowSessionService.create_escrow_session(
                amount_cents=2000,
                payer=seller,
                payee_account_id="acct_creator_123",
                metadata=escrow_metadata,
            )

        assert not result.success
        assert result.error_code == "PERSISTENCE_ERROR"


@pytest.mark.django_db
class TestVerifySession:
    def test_reports_local_and_stripe_status(
        self, completed_payment, seller, mock_stripe_adapter
    ):
        mock_stripe_adapter.retrieve_checkout_session.return_value = make_session(
            completed_payment.stripe_session_id, status="complete", payment_status="paid"
        )

        result = EscrowSessionService.verify_session(
            completed_payment.stripe_session_id, seller
        )

        assert result.success
        assert result.data.payment.id == completed_payment.id
        assert result.data.payment.status == PaymentStatus.COMPLETED
        assert result.data.checkout_status == "complete"
        assert result.data.checkout_payment_status == "paid"

    def test_never_transitions_payment(self, pending_payment, seller, mock_stripe_adapter):
        mock_stripe_adapter.retrieve_checkout_session.return_value = make_session(
            pending_payment.stripe_session_id, status="complete", payment_status="paid"
        )

        result = EscrowSessionService.verify_session(pending_payment.stripe_session_id, seller)

        assert result.success
        assert Payment.objects.get(id=pending_payment.id).status == PaymentStatus.PENDING

    def test_stripe_unreachable_still_returns_local_status(
        self, pending_payment, seller, mock_stripe_adapter
    ):
        mock_stripe_adapter.retrieve_checkout_session.side_effect = StripeAPIUnavailableError(
            "Stripe is unavailable"
        )

        result = EscrowSessionService.verify_session(pending_payment.stripe_session_id, seller)

        assert result.success
        assert result.data.payment.status == PaymentStatus.PENDING
        assert result.data.checkout_status is None

    def test_unknown_session(self, seller, mock_stripe_adapter):
        result = EscrowSessionService.verify_session("cs_unknown", seller)

        assert not result.success
        assert result.error_code == "PAYMENT_NOT_FOUND"

    def test_other_user_denied(self, pending_payment, other_seller, mock_stripe_adapter):
        result = EscrowSessionService.verify_session(
            pending_payment.stripe_session_id, other_seller
        )

        assert not result.success
        assert result.error_code == "PERMISSION_DENIED"
        mock_stripe_adapter.retrieve_checkout_session.assert_not_called()
