"""
Stripe API adapter for escrow operations.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions. All Stripe calls go through this adapter to
ensure consistent error handling, timeouts, idempotency, and
observability.

Features:
- Configurable timeouts on all API calls
- Automatic error translation to domain exceptions
- Structured logging with timing metrics
- Idempotency keys on every call that creates something
- Bounded retry of transient errors at this boundary only

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: Extra attempts for transient errors (default: 1)
- STRIPE_RETRY_BASE_DELAY_SECONDS: Base for exponential backoff

Usage:
    from payments.adapters import StripeAdapter

    session = StripeAdapter.create_checkout_session(
        payment_id=payment_id,
        amount_cents=2000,
        currency="usd",
        product_name="Launch video",
        metadata={"promotion_id": "...", "creator_id": "..."},
        idempotency_key=IdempotencyKeyGenerator.generate("create_session", payment_id),
    )

    transfer = StripeAdapter.create_transfer(
        amount_cents=1800,
        destination_account="acct_xxx",
        transfer_group=str(payment_id),
        idempotency_key=f"release:{payment_id}",
    )
"""

from __future__ import annotations

import hashlib
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from itertools import islice
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from payments.exceptions import (
    StripeAPIUnavailableError,
    StripeAuthenticationError,
    StripeError,
    StripeInsufficientFundsError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
    WebhookSignatureError,
)

if TYPE_CHECKING:
    from collections.abc import Callable


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class AccountResult:
    """
    Result from Stripe Connect Account operations.

    Attributes:
        id: Account ID (acct_xxx)
        email: Email the account was created with
        payouts_enabled: Whether payouts are enabled
        charges_enabled: Whether charges are enabled
        details_submitted: Whether onboarding details were submitted
        raw_response: Full Stripe response dict
    """

    id: str
    email: str | None = None
    payouts_enabled: bool = False
    charges_enabled: bool = False
    details_submitted: bool = False
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class AccountLinkResult:
    """
    Result from Stripe AccountLink creation.

    Attributes:
        url: Single-use hosted onboarding URL
        expires_at: Unix timestamp after which the URL is invalid
    """

    url: str
    expires_at: int | None = None


@dataclass
class CheckoutSessionResult:
    """
    Result from Stripe Checkout Session operations.

    Attributes:
        id: Checkout Session ID (cs_xxx)
        url: Hosted payment page URL (None once the session is closed)
        status: Session status (open, complete, expired)
        payment_status: Payment status (paid, unpaid, no_payment_required)
        amount_total: Total amount in cents
        currency: Currency code
        payment_intent_id: PaymentIntent created for the session, if any
        metadata: Attached metadata
        created: Unix timestamp of creation
        raw_response: Full Stripe response dict
    """

    id: str
    url: str | None
    status: str | None
    payment_status: str | None
    amount_total: int | None
    currency: str | None
    payment_intent_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    created: int | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"


@dataclass
class TransferResult:
    """
    Result from Stripe Transfer operations.

    Attributes:
        id: Transfer ID (tr_xxx)
        amount_cents: Amount transferred in cents
        currency: Currency code
        destination_account: Destination Stripe account ID
        transfer_group: Group tying the transfer to its payment
        metadata: Attached metadata
        raw_response: Full Stripe response dict
    """

    id: str
    amount_cents: int
    currency: str
    destination_account: str
    transfer_group: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The hash component ties keys to this deployment's SECRET_KEY while
    the structured format aids debugging and correlation.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation="create_session",
            entity_id=payment_id,
        )
        # Result: "create_session:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        """
        Generate a unique idempotency key.

        Args:
            operation: The Stripe operation (create_session, create_account, etc.)
            entity_id: The domain entity ID
            attempt: Attempt number (default: 1)

        Returns:
            Formatted idempotency key string
        """
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


def release_idempotency_key(payment_id: uuid.UUID | str) -> str:
    """
    Idempotency key for the single transfer of a payment's release.

    Stable for the lifetime of the payment, so any retry of the release
    transfer resolves to the transfer Stripe already created.
    """
    return f"release:{payment_id}"


# =============================================================================
# Retry Logic Helpers
# =============================================================================


def is_retryable_stripe_error(error: Exception) -> bool:
    """
    Check if a Stripe error is retryable.

    Args:
        error: The exception to check

    Returns:
        True if the error is a transient Stripe error that can be retried
    """
    if isinstance(error, StripeError):
        return getattr(error, "is_retryable", False)
    return False


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 1: 2.0 - 2.5 seconds
        delay = backoff_delay(attempt=1)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    All methods are classmethods - no instance state is maintained.
    Thread-safe for use from web workers and Celery workers.

    Operations:
    - create_payee_account: Connect express accounts
    - create_onboarding_link: Hosted onboarding URL
    - create_checkout_session / retrieve_checkout_session /
      list_recent_checkout_sessions: Hosted checkout
    - create_transfer / find_transfer_for_payment: Escrow release
    - verify_webhook_signature: Signed event parsing
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        """Configure Stripe client with API key and timeout."""
        stripe.api_key = settings.STRIPE_SECRET_KEY
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
        # Retries are handled by _execute so they are logged and bounded here
        stripe.max_network_retries = 0

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def _execute(
        cls,
        operation: str,
        log_context: dict[str, Any],
        call: Callable[[], Any],
    ) -> Any:
        """
        Run a Stripe call with timing, logging, and bounded retry.

        Transient failures (rate limits, connection errors, timeouts,
        5xx) are retried up to STRIPE_MAX_RETRIES more times with
        backoff. Calls that create objects must carry an idempotency key
        so a retry cannot create a second object.

        Raises:
            StripeError: Translated domain exception from the last attempt
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {"operation": operation, **log_context}
        max_retries = getattr(settings, "STRIPE_MAX_RETRIES", 1)
        base_delay = getattr(settings, "STRIPE_RETRY_BASE_DELAY_SECONDS", 0.5)

        attempt = 0
        while True:
            start_time = time.time()
            logger.info(
                "Starting Stripe operation",
                extra={**log_context, "attempt": attempt + 1},
            )
            try:
                response = call()
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                try:
                    cls._handle_stripe_error(e, log_context, duration_ms)
                except StripeError as domain_error:
                    if is_retryable_stripe_error(domain_error) and attempt < max_retries:
                        delay = backoff_delay(attempt, base=base_delay)
                        logger.warning(
                            "Retrying Stripe operation",
                            extra={
                                **log_context,
                                "attempt": attempt + 1,
                                "retry_in_seconds": round(delay, 3),
                                "error_code": domain_error.error_code,
                            },
                        )
                        time.sleep(delay)
                        attempt += 1
                        continue
                    raise
                raise

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "stripe_object_id": getattr(response, "id", None),
                    "duration_ms": duration_ms,
                },
            )
            return response

    # =========================================================================
    # Connect Accounts
    # =========================================================================

    @classmethod
    def create_payee_account(
        cls,
        email: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> AccountResult:
        """
        Create an express Connect account able to receive transfers.

        Args:
            email: Account holder email
            idempotency_key: Unique key so a retried call reuses the account
            metadata: Optional metadata dict (e.g., user_id)

        Returns:
            AccountResult with the new account ID
        """
        account = cls._execute(
            "create_payee_account",
            {"idempotency_key": idempotency_key},
            lambda: stripe.Account.create(
                type="express",
                country=settings.STRIPE_CONNECT_COUNTRY,
                email=email,
                capabilities={
                    "card_payments": {"requested": True},
                    "transfers": {"requested": True},
                },
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            ),
        )
        return cls._to_account_result(account)

    @classmethod
    def create_onboarding_link(
        cls,
        account_id: str,
        refresh_url: str,
        return_url: str,
    ) -> AccountLinkResult:
        """
        Create a single-use hosted onboarding link.

        Args:
            account_id: Stripe Account ID (acct_xxx)
            refresh_url: Where Stripe sends the user if the link expired
            return_url: Where Stripe sends the user after the form

        Returns:
            AccountLinkResult with the onboarding URL
        """
        link = cls._execute(
            "create_onboarding_link",
            {"account_id": account_id},
            lambda: stripe.AccountLink.create(
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
            ),
        )
        return AccountLinkResult(url=link.url, expires_at=getattr(link, "expires_at", None))

    # =========================================================================
    # Checkout Sessions
    # =========================================================================

    @classmethod
    def create_checkout_session(
        cls,
        payment_id: uuid.UUID | str,
        amount_cents: int,
        currency: str,
        product_name: str,
        success_url: str,
        cancel_url: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
        customer_email: str | None = None,
    ) -> CheckoutSessionResult:
        """
        Create a hosted checkout session paying into the platform balance.

        The payment ID is attached as client_reference_id, in metadata and
        as the PaymentIntent's transfer_group, so the session, the charge
        and the eventual release transfer can all be traced back to it.

        Args:
            payment_id: Local Payment ID reserved for this session
            amount_cents: Amount in cents
            currency: Currency code
            product_name: Line item name shown on the checkout page
            success_url: Redirect after payment ({CHECKOUT_SESSION_ID} allowed)
            cancel_url: Redirect when the payer abandons checkout
            idempotency_key: Unique key for idempotent creation
            metadata: Key-value pairs to attach to the session
            customer_email: Prefills the payer's email

        Returns:
            CheckoutSessionResult with session ID and hosted URL
        """
        if amount_cents <= 0:
            raise ValueError("amount_cents must be positive")

        session_metadata = {**(metadata or {}), "payment_id": str(payment_id)}
        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": product_name},
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            "client_reference_id": str(payment_id),
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": session_metadata,
            "payment_intent_data": {
                "transfer_group": str(payment_id),
                "metadata": session_metadata,
            },
        }
        if customer_email:
            params["customer_email"] = customer_email

        session = cls._execute(
            "create_checkout_session",
            {
                "payment_id": str(payment_id),
                "amount_cents": amount_cents,
                "idempotency_key": idempotency_key,
            },
            lambda: stripe.checkout.Session.create(
                idempotency_key=idempotency_key,
                **params,
            ),
        )
        return cls._to_session_result(session)

    @classmethod
    def retrieve_checkout_session(cls, session_id: str) -> CheckoutSessionResult:
        """
        Retrieve a checkout session's current status.

        Args:
            session_id: Checkout Session ID (cs_xxx)
        """
        session = cls._execute(
            "retrieve_checkout_session",
            {"stripe_session_id": session_id},
            lambda: stripe.checkout.Session.retrieve(session_id),
        )
        return cls._to_session_result(session)

    @classmethod
    def list_recent_checkout_sessions(
        cls,
        created_after: datetime,
        limit: int = 100,
    ) -> list[CheckoutSessionResult]:
        """
        List recent checkout sessions for reconciliation, newest first.

        Follows Stripe's pagination until limit sessions are read.

        Args:
            created_after: Only return sessions created after this time
            limit: Maximum number to return across all pages (default: 100)
        """
        created_timestamp = int(created_after.timestamp())
        sessions = cls._execute(
            "list_recent_checkout_sessions",
            {"created_after": created_timestamp, "limit": limit},
            lambda: list(
                islice(
                    stripe.checkout.Session.list(
                        created={"gte": created_timestamp},
                        limit=min(limit, 100),
                    ).auto_paging_iter(),
                    limit,
                )
            ),
        )
        return [cls._to_session_result(session) for session in sessions]

    # =========================================================================
    # Transfers
    # =========================================================================

    @classmethod
    def create_transfer(
        cls,
        amount_cents: int,
        destination_account: str,
        idempotency_key: str,
        transfer_group: str,
        currency: str = "usd",
        metadata: dict[str, str] | None = None,
        source_transaction: str | None = None,
    ) -> TransferResult:
        """
        Create a transfer to a connected Stripe account.

        Args:
            amount_cents: Amount to transfer in cents
            destination_account: Stripe Connect account ID (acct_xxx)
            idempotency_key: Unique key for idempotent transfer
            transfer_group: Group used to find this transfer again
            currency: Currency code (default: 'usd')
            metadata: Optional metadata dict
            source_transaction: Charge the transfer draws from, so it does
                not depend on the platform's available balance

        Returns:
            TransferResult with transfer details

        Raises:
            StripeInvalidAccountError: Invalid destination account
            StripeInsufficientFundsError: Insufficient platform balance
        """
        transfer_params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency,
            "destination": destination_account,
            "transfer_group": transfer_group,
            "metadata": metadata or {},
        }
        if source_transaction:
            transfer_params["source_transaction"] = source_transaction

        transfer = cls._execute(
            "create_transfer",
            {
                "amount_cents": amount_cents,
                "destination_account": destination_account,
                "transfer_group": transfer_group,
                "idempotency_key": idempotency_key,
            },
            lambda: stripe.Transfer.create(
                idempotency_key=idempotency_key,
                **transfer_params,
            ),
        )
        return cls._to_transfer_result(transfer)

    @classmethod
    def find_transfer_for_payment(
        cls,
        payment_id: uuid.UUID | str,
    ) -> TransferResult | None:
        """
        Look up the release transfer of a payment, if one exists.

        This is a read. It never creates a transfer.

        Args:
            payment_id: Local Payment ID used as transfer_group

        Returns:
            The most recent transfer in the group, or None
        """
        transfers = cls._execute(
            "find_transfer_for_payment",
            {"transfer_group": str(payment_id)},
            lambda: stripe.Transfer.list(transfer_group=str(payment_id), limit=1),
        )
        if not transfers.data:
            return None
        return cls._to_transfer_result(transfers.data[0])

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    @classmethod
    def verify_webhook_signature(
        cls,
        payload: bytes,
        signature: str,
    ) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Args:
            payload: Raw webhook payload bytes
            signature: Stripe-Signature header value

        Returns:
            Parsed event data dict

        Raises:
            WebhookSignatureError: Missing secret, malformed payload or
                invalid signature
        """
        secret = settings.STRIPE_WEBHOOK_SECRET
        if not secret:
            raise WebhookSignatureError(
                "Webhook signing secret is not configured",
                error_code="WEBHOOK_SECRET_MISSING",
            )
        try:
            event = stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(
                "Invalid webhook signature",
                details={"error": str(e)},
            ) from e
        except ValueError as e:
            raise WebhookSignatureError(
                "Malformed webhook payload",
                error_code="INVALID_PAYLOAD",
                details={"error": str(e)},
            ) from e
        return event.to_dict()

    # =========================================================================
    # Result Mapping
    # =========================================================================

    @staticmethod
    def _to_account_result(account: Any) -> AccountResult:
        return AccountResult(
            id=account.id,
            email=getattr(account, "email", None),
            payouts_enabled=bool(getattr(account, "payouts_enabled", False)),
            charges_enabled=bool(getattr(account, "charges_enabled", False)),
            details_submitted=bool(getattr(account, "details_submitted", False)),
            raw_response=account.to_dict(),
        )

    @staticmethod
    def _to_session_result(session: Any) -> CheckoutSessionResult:
        payment_intent = getattr(session, "payment_intent", None)
        if payment_intent is not None and not isinstance(payment_intent, str):
            payment_intent = payment_intent.id
        return CheckoutSessionResult(
            id=session.id,
            url=getattr(session, "url", None),
            status=getattr(session, "status", None),
            payment_status=getattr(session, "payment_status", None),
            amount_total=getattr(session, "amount_total", None),
            currency=getattr(session, "currency", None),
            payment_intent_id=payment_intent,
            metadata=dict(getattr(session, "metadata", None) or {}),
            created=getattr(session, "created", None),
            raw_response=session.to_dict(),
        )

    @staticmethod
    def _to_transfer_result(transfer: Any) -> TransferResult:
        return TransferResult(
            id=transfer.id,
            amount_cents=transfer.amount,
            currency=transfer.currency,
            destination_account=transfer.destination,
            transfer_group=getattr(transfer, "transfer_group", None),
            metadata=dict(transfer.metadata or {}),
            raw_response=transfer.to_dict(),
        )

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to domain exceptions.

        Maps Stripe SDK errors to domain exceptions with proper error
        categorization for retry decisions.

        Raises:
            StripeInsufficientFundsError: Platform balance too low
            StripeInvalidAccountError: Invalid Connect account
            StripeInvalidRequestError: Invalid request parameters
            StripeAuthenticationError: Bad API key
            StripeRateLimitError: Rate limited
            StripeTimeoutError: Request timed out
            StripeAPIUnavailableError: API unavailable or unknown failure
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )

            if error.code in ("balance_insufficient", "insufficient_funds"):
                raise StripeInsufficientFundsError(
                    str(error),
                    stripe_code=error.code,
                ) from error

            if error.code == "account_invalid" or "account" in str(error).lower():
                raise StripeInvalidAccountError(
                    str(error),
                    stripe_code=error.code,
                ) from error

            raise StripeInvalidRequestError(
                str(error),
                stripe_code=error.code,
            ) from error

        elif isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            ) from error

        elif isinstance(error, stripe.APIConnectionError):
            if "timed out" in str(error).lower():
                logger.error("Stripe request timed out", extra=log_context)
                raise StripeTimeoutError(
                    "Stripe request timed out. Please retry.",
                    stripe_code="timeout",
                ) from error
            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            ) from error

        elif isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise StripeAuthenticationError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            ) from error

        elif isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            ) from error

        elif isinstance(error, stripe.StripeError):
            logger.error(
                f"Stripe error: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise StripeInvalidRequestError(
                str(error),
                stripe_code=getattr(error, "code", None),
            ) from error

        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                f"Unexpected Stripe error: {error}",
                stripe_code="unknown_error",
            ) from error
