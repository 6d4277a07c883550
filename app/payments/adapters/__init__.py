"""
Payment adapters for external services.

All Stripe API calls go through StripeAdapter to ensure consistent error
handling, timeouts, idempotency, and observability.

Usage:
    from payments.adapters import StripeAdapter

    session = StripeAdapter.retrieve_checkout_session("cs_test_123")
    if session.is_paid:
        ...
"""

from payments.adapters.stripe_adapter import (
    AccountLinkResult,
    AccountResult,
    CheckoutSessionResult,
    IdempotencyKeyGenerator,
    StripeAdapter,
    TransferResult,
    backoff_delay,
    is_retryable_stripe_error,
    release_idempotency_key,
)

__all__ = [
    "AccountLinkResult",
    "AccountResult",
    "CheckoutSessionResult",
    "IdempotencyKeyGenerator",
    "StripeAdapter",
    "TransferResult",
    "backoff_delay",
    "is_retryable_stripe_error",
    "release_idempotency_key",
]
