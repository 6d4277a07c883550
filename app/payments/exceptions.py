"""
Payment-specific exceptions for escrow operations.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentNotFoundError - Payment entity lookup failures
    ├── PaymentValidationError - Payment validation failures
    ├── PaymentPersistenceError - Local store write failed after gateway success
    ├── WebhookSignatureError - Webhook signature missing or invalid
    └── PaymentProcessingError - Payment processing failures
        └── StripeError - Base for all Stripe errors
            ├── StripeInsufficientFundsError - Platform balance too low (permanent)
            ├── StripeInvalidAccountError - Invalid Stripe account (permanent)
            ├── StripeInvalidRequestError - Invalid request params (permanent)
            ├── StripeAuthenticationError - Bad API key (permanent)
            ├── StripeRateLimitError - Rate limited (transient, retry)
            ├── StripeAPIUnavailableError - API unavailable (transient, retry)
            └── StripeTimeoutError - Request timeout (transient, retry)

    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)

Usage:
    from payments.exceptions import StripeError, InvalidStateTransitionError

    try:
        StripeAdapter.create_transfer(...)
    except StripeError as e:
        if e.is_retryable:
            ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all payment operations.

    Inherits from BaseApplicationError for consistent API error responses.
    """

    default_error_code: str = "PAYMENT_ERROR"


class PaymentNotFoundError(PaymentError):
    """
    Raised when a payment entity cannot be found.

    Example:
        payment = Payment.objects.filter(id=payment_id).first()
        if not payment:
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)}
            )
    """

    default_error_code: str = "PAYMENT_NOT_FOUND"


class PaymentValidationError(PaymentError):
    """
    Raised when payment validation fails.

    Use for:
    - Non-positive amounts
    - Missing promotion or creator metadata
    - Creator without a usable payee account
    """

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"


class PaymentPersistenceError(PaymentError):
    """
    Raised when the local store cannot record an outcome the gateway
    already produced.

    The gateway side effect (session, transfer) exists, so this always
    needs reconciliation. Callers log it with reconciliation_needed=True.
    """

    default_error_code: str = "PERSISTENCE_ERROR"


class WebhookSignatureError(PaymentError):
    """
    Raised when a webhook payload fails signature verification.

    Nothing may be read from or written to the store for such a request.
    """

    default_error_code: str = "INVALID_SIGNATURE"


class PaymentProcessingError(PaymentError):
    """
    Raised when payment processing fails at the gateway.
    """

    default_error_code: str = "PAYMENT_PROCESSING_ERROR"


# =============================================================================
# Stripe-Specific Exceptions
# =============================================================================


class StripeError(PaymentProcessingError):
    """
    Base exception for all Stripe-related errors.

    Provides common attributes for Stripe error handling:
    - stripe_code: Stripe's internal error code
    - decline_code: Card decline code (if applicable)
    - is_retryable: Whether the operation can be retried

    Use is_retryable to determine retry behavior:
    - True: Transient error, safe to retry with the same idempotency key
    - False: Permanent error, do not retry
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class StripeInsufficientFundsError(StripeError):
    """
    The platform balance cannot cover a transfer.

    Transfers draw on the platform balance; funds from a charge may not
    be available yet. Operator action or waiting is required.
    """

    default_error_code: str = "INSUFFICIENT_FUNDS"


class StripeInvalidAccountError(StripeError):
    """
    Invalid Stripe Connect account.

    Raised when the destination account for a transfer is not found,
    restricted, or not able to receive transfers.
    """

    default_error_code: str = "INVALID_STRIPE_ACCOUNT"


class StripeInvalidRequestError(StripeError):
    """
    Invalid request parameters sent to Stripe.

    The request is malformed and will never succeed with the same
    parameters. This usually indicates a bug, not a user error.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"


class StripeAuthenticationError(StripeError):
    """
    Stripe rejected the configured API key.
    """

    default_error_code: str = "STRIPE_AUTHENTICATION_FAILED"


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with backoff)
# -----------------------------------------------------------------------------


class StripeRateLimitError(StripeError):
    """
    Rate limited by Stripe API.
    """

    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """
    Stripe API is temporarily unavailable.

    Covers network connectivity issues and Stripe server errors (5xx).
    """

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    Stripe API call timed out.

    The operation may have succeeded on Stripe's side. Retrying with the
    same idempotency key returns the original response if it did.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# State Exceptions
# =============================================================================


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a payment is not in the state an operation requires.

    Example:
        if payment.status != PaymentStatus.COMPLETED:
            raise InvalidStateTransitionError(
                f"Cannot release payment in '{payment.status}' state",
                details={"current_state": payment.status, "target_state": "released"}
            )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


__all__ = [
    # Payment domain
    "PaymentError",
    "PaymentNotFoundError",
    "PaymentValidationError",
    "PaymentPersistenceError",
    "WebhookSignatureError",
    "PaymentProcessingError",
    # Stripe-specific
    "StripeError",
    "StripeInsufficientFundsError",
    "StripeInvalidAccountError",
    "StripeInvalidRequestError",
    "StripeAuthenticationError",
    "StripeRateLimitError",
    "StripeAPIUnavailableError",
    "StripeTimeoutError",
    # State
    "InvalidStateTransitionError",
]
