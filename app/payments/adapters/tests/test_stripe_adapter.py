"""
Tests for Stripe adapter.

Tests cover:
- Idempotency key generation
- Helper functions (is_retryable, backoff_delay)
- Connect account, checkout session and transfer operations
- Webhook signature verification
- Error translation and bounded retry of transient errors
"""

import uuid
from datetime import datetime, timezone

import pytest
import stripe
from django.test import override_settings

from payments.adapters import (
    IdempotencyKeyGenerator,
    StripeAdapter,
    backoff_delay,
    is_retryable_stripe_error,
    release_idempotency_key,
)
from payments.adapters.tests.factories import MockStripeList, MockStripeObject
from payments.exceptions import (
    StripeAPIUnavailableError,
    StripeAuthenticationError,
    StripeInsufficientFundsError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
    WebhookSignatureError,
)


# =============================================================================
# IdempotencyKeyGenerator Tests
# =============================================================================


class TestIdempotencyKeyGenerator:
    """Tests for IdempotencyKeyGenerator."""

    def test_generate_key_format(self):
        """Should generate key in correct format."""
        entity_id = uuid.uuid4()
        key = IdempotencyKeyGenerator.generate(
            operation="create_session",
            entity_id=entity_id,
            attempt=1,
        )

        parts = key.split(":")
        assert len(parts) == 4
        assert parts[0] == "create_session"
        assert parts[1] == str(entity_id)
        assert parts[2] == "1"
        assert len(parts[3]) == 8

    def test_same_inputs_produce_same_key(self):
        """Same inputs should produce same key (deterministic)."""
        entity_id = uuid.uuid4()

        key1 = IdempotencyKeyGenerator.generate("create_account", entity_id)
        key2 = IdempotencyKeyGenerator.generate("create_account", entity_id)

        assert key1 == key2

    def test_different_operations_produce_different_keys(self):
        """Different operations should produce different keys."""
        entity_id = uuid.uuid4()

        key1 = IdempotencyKeyGenerator.generate("create_account", entity_id)
        key2 = IdempotencyKeyGenerator.generate("create_session", entity_id)

        assert key1 != key2

    def test_release_key_is_stable_per_payment(self):
        """The release key should only depend on the payment."""
        payment_id = uuid.uuid4()

        assert release_idempotency_key(payment_id) == release_idempotency_key(
            str(payment_id)
        )
        assert release_idempotency_key(payment_id) != release_idempotency_key(
            uuid.uuid4()
        )


# =============================================================================
# Helper Function Tests
# =============================================================================


class TestIsRetryableStripeError:
    """Tests for is_retryable_stripe_error helper."""

    def test_retryable_errors(self):
        """Should return True for transient Stripe errors."""
        assert is_retryable_stripe_error(StripeRateLimitError("Rate limited")) is True
        assert (
            is_retryable_stripe_error(StripeAPIUnavailableError("Unavailable")) is True
        )
        assert is_retryable_stripe_error(StripeTimeoutError("Timeout")) is True

    def test_non_retryable_errors(self):
        """Should return False for permanent Stripe errors."""
        assert (
            is_retryable_stripe_error(StripeInsufficientFundsError("No funds")) is False
        )
        assert (
            is_retryable_stripe_error(StripeInvalidAccountError("Bad account")) is False
        )
        assert (
            is_retryable_stripe_error(StripeInvalidRequestError("Bad request")) is False
        )

    def test_non_stripe_errors(self):
        """Should return False for non-Stripe errors."""
        assert is_retryable_stripe_error(ValueError("test")) is False
        assert is_retryable_stripe_error(RuntimeError("test")) is False


class TestBackoffDelay:
    """Tests for backoff_delay helper."""

    def test_exponential_growth(self):
        """Should grow exponentially with attempt number."""
        assert 1.0 <= backoff_delay(0, base=1.0) <= 1.25
        assert 2.0 <= backoff_delay(1, base=1.0) <= 2.5
        assert 4.0 <= backoff_delay(2, base=1.0) <= 5.0

    def test_respects_max_delay(self):
        """Should cap at max_delay."""
        assert backoff_delay(10, base=1.0, max_delay=60.0) <= 75.0


# =============================================================================
# Connect Account Tests
# =============================================================================


class TestConnectAccounts:
    """Tests for payee account operations."""

    @override_settings(STRIPE_CONNECT_COUNTRY="US")
    def test_create_payee_account(self, mock_stripe_account):
        """Should create an express account with transfers requested."""
        result = StripeAdapter.create_payee_account(
            email="creator@example.com",
            idempotency_key="create_account:1:1:abcd1234",
            metadata={"user_id": "1"},
        )

        assert result.id == "acct_test123"
        kwargs = mock_stripe_account.create.call_args.kwargs
        assert kwargs["type"] == "express"
        assert kwargs["country"] == "US"
        assert kwargs["capabilities"]["transfers"] == {"requested": True}
        assert kwargs["idempotency_key"] == "create_account:1:1:abcd1234"
        assert kwargs["metadata"] == {"user_id": "1"}

    def test_create_onboarding_link(self, mock_stripe_account_link):
        """Should create an account_onboarding link with both redirect URLs."""
        result = StripeAdapter.create_onboarding_link(
            account_id="acct_test123",
            refresh_url="https://app.example.com/refresh",
            return_url="https://app.example.com/return",
        )

        assert result.url.startswith("https://connect.stripe.com/")
        assert result.expires_at == 1760000300
        mock_stripe_account_link.create.assert_called_once_with(
            account="acct_test123",
            refresh_url="https://app.example.com/refresh",
            return_url="https://app.example.com/return",
            type="account_onboarding",
        )


# =============================================================================
# Checkout Session Tests
# =============================================================================


class TestCheckoutSessions:
    """Tests for hosted checkout operations."""

    def test_create_checkout_session_links_payment(
        self, mock_stripe_checkout_session, payment_id
    ):
        """Should tag the session and its PaymentIntent with the payment ID."""
        result = StripeAdapter.create_checkout_session(
            payment_id=payment_id,
            amount_cents=2000,
            currency="usd",
            product_name="Promotion escrow",
            success_url="https://app.example.com/success",
            cancel_url="https://app.example.com/cancel",
            idempotency_key="create_session:key",
            metadata={"promotion_id": "p-1", "creator_id": "7"},
            customer_email="seller@example.com",
        )

        assert result.id == "cs_test123"
        assert result.url == "https://checkout.stripe.com/c/pay/cs_test123"

        kwargs = mock_stripe_checkout_session.create.call_args.kwargs
        assert kwargs["mode"] == "payment"
        assert kwargs["client_reference_id"] == str(payment_id)
        assert kwargs["idempotency_key"] == "create_session:key"
        assert kwargs["customer_email"] == "seller@example.com"
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 2000
        assert kwargs["metadata"] == {
            "promotion_id": "p-1",
            "creator_id": "7",
            "payment_id": str(payment_id),
        }
        assert kwargs["payment_intent_data"]["transfer_group"] == str(payment_id)

    def test_create_checkout_session_rejects_non_positive_amount(
        self, mock_stripe_checkout_session, payment_id
    ):
        """Should refuse to create a session for zero."""
        with pytest.raises(ValueError, match="amount_cents must be positive"):
            StripeAdapter.create_checkout_session(
                payment_id=payment_id,
                amount_cents=0,
                currency="usd",
                product_name="Promotion escrow",
                success_url="https://app.example.com/success",
                cancel_url="https://app.example.com/cancel",
                idempotency_key="create_session:key",
            )

        mock_stripe_checkout_session.create.assert_not_called()

    def test_retrieve_paid_session(
        self, mock_stripe_checkout_session, mock_checkout_session
    ):
        """Should report paid sessions and unwrap an expanded PaymentIntent."""
        mock_stripe_checkout_session.retrieve.return_value = mock_checkout_session(
            status="complete",
            payment_status="paid",
            payment_intent=MockStripeObject({"id": "pi_test123"}),
        )

        result = StripeAdapter.retrieve_checkout_session("cs_test123")

        assert result.is_paid is True
        assert result.status == "complete"
        assert result.payment_intent_id == "pi_test123"

    def test_list_recent_checkout_sessions(
        self, mock_stripe_checkout_session, mock_checkout_session
    ):
        """Should list sessions created after the given time."""
        mock_stripe_checkout_session.list.return_value = MockStripeList(
            items=[mock_checkout_session(id="cs_a"), mock_checkout_session(id="cs_b")]
        )
        created_after = datetime(2026, 1, 1, tzinfo=timezone.utc)

        result = StripeAdapter.list_recent_checkout_sessions(created_after, limit=500)

        assert [session.id for session in result] == ["cs_a", "cs_b"]
        mock_stripe_checkout_session.list.assert_called_once_with(
            created={"gte": int(created_after.timestamp())},
            limit=100,
        )

    def test_list_recent_checkout_sessions_follows_pages(
        self, mock_stripe_checkout_session, mock_checkout_session
    ):
        """Should read past the first page, up to the limit."""
        first_page = [mock_checkout_session(id=f"cs_{n}") for n in range(100)]
        second_page = [mock_checkout_session(id=f"cs_{n}") for n in range(100, 200)]
        third_page = [mock_checkout_session(id=f"cs_{n}") for n in range(200, 250)]
        listing = MockStripeList(
            items=first_page,
            has_more=True,
            later_pages=[second_page, third_page],
        )
        mock_stripe_checkout_session.list.return_value = listing
        created_after = datetime(2026, 1, 1, tzinfo=timezone.utc)

        result = StripeAdapter.list_recent_checkout_sessions(created_after, limit=200)

        assert len(result) == 200
        assert result[0].id == "cs_0"
        assert result[-1].id == "cs_199"
        assert listing.pages_fetched == 2
        mock_stripe_checkout_session.list.assert_called_once_with(
            created={"gte": int(created_after.timestamp())},
            limit=100,
        )


# =============================================================================
# Transfer Tests
# =============================================================================


class TestTransfers:
    """Tests for release transfers."""

    def test_create_transfer(self, mock_stripe_transfer, payment_id):
        """Should transfer to the destination from the originating charge."""
        result = StripeAdapter.create_transfer(
            amount_cents=1800,
            destination_account="acct_dest123",
            idempotency_key=release_idempotency_key(payment_id),
            transfer_group=str(payment_id),
            metadata={"payment_id": str(payment_id)},
            source_transaction="pi_test123",
        )

        assert result.id == "tr_test123"
        assert result.amount_cents == 1800
        assert result.destination_account == "acct_dest123"
        mock_stripe_transfer.create.assert_called_once_with(
            idempotency_key=f"release:{payment_id}",
            amount=1800,
            currency="usd",
            destination="acct_dest123",
            transfer_group=str(payment_id),
            metadata={"payment_id": str(payment_id)},
            source_transaction="pi_test123",
        )

    def test_find_transfer_for_payment_none(self, mock_stripe_transfer, payment_id):
        """Should return None when no transfer exists in the group."""
        assert StripeAdapter.find_transfer_for_payment(payment_id) is None

        mock_stripe_transfer.list.assert_called_once_with(
            transfer_group=str(payment_id), limit=1
        )
        mock_stripe_transfer.create.assert_not_called()

    def test_find_transfer_for_payment_found(
        self, mock_stripe_transfer, mock_transfer, payment_id
    ):
        """Should return the transfer of the group."""
        mock_stripe_transfer.list.return_value = MockStripeList(
            items=[mock_transfer(id="tr_existing")]
        )

        result = StripeAdapter.find_transfer_for_payment(payment_id)

        assert result.id == "tr_existing"
        assert result.transfer_group == str(payment_id)


# =============================================================================
# Webhook Verification Tests
# =============================================================================


class TestWebhookVerification:
    """Tests for webhook signature verification."""

    @override_settings(STRIPE_WEBHOOK_SECRET="whsec_test_secret")
    def test_valid_signature_returns_event(self, mock_stripe_webhook):
        """Should return the parsed event as a dict."""
        mock_stripe_webhook.construct_event.return_value = MockStripeObject(
            {"id": "evt_1", "type": "checkout.session.completed"}
        )

        event = StripeAdapter.verify_webhook_signature(b"{}", "t=1,v1=abc")

        assert event == {"id": "evt_1", "type": "checkout.session.completed"}
        mock_stripe_webhook.construct_event.assert_called_once_with(
            b"{}", "t=1,v1=abc", "whsec_test_secret"
        )

    @override_settings(STRIPE_WEBHOOK_SECRET="whsec_test_secret")
    def test_invalid_signature(self, mock_stripe_webhook):
        """Should raise WebhookSignatureError for a bad signature."""
        mock_stripe_webhook.construct_event.side_effect = (
            stripe.SignatureVerificationError("No signatures found", "t=1,v1=bad")
        )

        with pytest.raises(WebhookSignatureError) as exc_info:
            StripeAdapter.verify_webhook_signature(b"{}", "t=1,v1=bad")

        assert exc_info.value.error_code == "INVALID_SIGNATURE"

    @override_settings(STRIPE_WEBHOOK_SECRET="whsec_test_secret")
    def test_malformed_payload(self, mock_stripe_webhook):
        """Should raise WebhookSignatureError for an unparseable body."""
        mock_stripe_webhook.construct_event.side_effect = ValueError("Invalid JSON")

        with pytest.raises(WebhookSignatureError) as exc_info:
            StripeAdapter.verify_webhook_signature(b"not json", "t=1,v1=abc")

        assert exc_info.value.error_code == "INVALID_PAYLOAD"

    @override_settings(STRIPE_WEBHOOK_SECRET="")
    def test_missing_secret(self, mock_stripe_webhook):
        """Should refuse to verify without a configured secret."""
        with pytest.raises(WebhookSignatureError) as exc_info:
            StripeAdapter.verify_webhook_signature(b"{}", "t=1,v1=abc")

        assert exc_info.value.error_code == "WEBHOOK_SECRET_MISSING"
        mock_stripe_webhook.construct_event.assert_not_called()


# =============================================================================
# Error Translation Tests
# =============================================================================


class TestStripeAdapterErrorTranslation:
    """Tests for Stripe error translation to domain exceptions."""

    def test_invalid_request_error(
        self, mock_stripe_checkout_session, invalid_request_error
    ):
        """Should translate InvalidRequestError to StripeInvalidRequestError."""
        mock_stripe_checkout_session.retrieve.side_effect = invalid_request_error()

        with pytest.raises(StripeInvalidRequestError) as exc_info:
            StripeAdapter.retrieve_checkout_session("cs_missing")

        assert exc_info.value.is_retryable is False
        assert exc_info.value.stripe_code == "resource_missing"
        assert mock_stripe_checkout_session.retrieve.call_count == 1

    def test_invalid_account_error(
        self, mock_stripe_transfer, invalid_request_error, payment_id
    ):
        """Should translate account errors to StripeInvalidAccountError."""
        mock_stripe_transfer.create.side_effect = invalid_request_error(
            message="No such destination: acct_invalid",
            param="destination",
            code="account_invalid",
        )

        with pytest.raises(StripeInvalidAccountError):
            StripeAdapter.create_transfer(
                amount_cents=1800,
                destination_account="acct_invalid",
                idempotency_key=release_idempotency_key(payment_id),
                transfer_group=str(payment_id),
            )

    def test_insufficient_balance_error(
        self, mock_stripe_transfer, invalid_request_error, payment_id
    ):
        """Should translate a short platform balance to StripeInsufficientFundsError."""
        mock_stripe_transfer.create.side_effect = invalid_request_error(
            message="Insufficient funds in Stripe balance",
            param=None,
            code="balance_insufficient",
        )

        with pytest.raises(StripeInsufficientFundsError) as exc_info:
            StripeAdapter.create_transfer(
                amount_cents=1800,
                destination_account="acct_dest123",
                idempotency_key=release_idempotency_key(payment_id),
                transfer_group=str(payment_id),
            )

        assert exc_info.value.is_retryable is False

    @override_settings(STRIPE_MAX_RETRIES=1)
    def test_rate_limit_retried_once_then_raised(
        self, mock_stripe_checkout_session, rate_limit_error, no_retry_sleep
    ):
        """Should retry a transient error once and then raise it."""
        mock_stripe_checkout_session.retrieve.side_effect = rate_limit_error

        with pytest.raises(StripeRateLimitError) as exc_info:
            StripeAdapter.retrieve_checkout_session("cs_test123")

        assert exc_info.value.is_retryable is True
        assert mock_stripe_checkout_session.retrieve.call_count == 2
        assert no_retry_sleep.call_count == 1

    @override_settings(STRIPE_MAX_RETRIES=1)
    def test_transient_error_then_success(
        self, mock_stripe_checkout_session, mock_checkout_session, api_connection_error
    ):
        """Should return the result of a successful retry."""
        mock_stripe_checkout_session.retrieve.side_effect = [
            api_connection_error,
            mock_checkout_session(),
        ]

        result = StripeAdapter.retrieve_checkout_session("cs_test123")

        assert result.id == "cs_test123"
        assert mock_stripe_checkout_session.retrieve.call_count == 2

    @override_settings(STRIPE_MAX_RETRIES=0)
    def test_timeout_error(self, mock_stripe_checkout_session, timeout_error):
        """Should translate timed out connections to StripeTimeoutError."""
        mock_stripe_checkout_session.retrieve.side_effect = timeout_error

        with pytest.raises(StripeTimeoutError):
            StripeAdapter.retrieve_checkout_session("cs_test123")

    @override_settings(STRIPE_MAX_RETRIES=0)
    def test_api_error(self, mock_stripe_checkout_session, api_error):
        """Should translate APIError to StripeAPIUnavailableError."""
        mock_stripe_checkout_session.retrieve.side_effect = api_error

        with pytest.raises(StripeAPIUnavailableError) as exc_info:
            StripeAdapter.retrieve_checkout_session("cs_test123")

        assert exc_info.value.is_retryable is True

    def test_authentication_error_not_retried(
        self, mock_stripe_account, authentication_error
    ):
        """Should translate AuthenticationError and never retry it."""
        mock_stripe_account.create.side_effect = authentication_error

        with pytest.raises(StripeAuthenticationError) as exc_info:
            StripeAdapter.create_payee_account(
                email="creator@example.com",
                idempotency_key="create_account:1:1:abcd1234",
            )

        assert exc_info.value.is_retryable is False
        assert mock_stripe_account.create.call_count == 1
