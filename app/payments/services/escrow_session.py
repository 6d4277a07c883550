"""
Escrow session service for opening hosted checkout sessions.

A seller pays into the platform balance through a Stripe Checkout
session. The local Payment row is created PENDING right after Stripe
returns the session, and only webhooks move it forward.

Known gap between the two writes:
    If the process dies after Stripe created the session but before the
    Payment row is saved, the session exists at Stripe with no local
    record. The session id is the dedup key for that row, and the
    session metadata carries everything needed to rebuild it, so
    ReconciliationService.backfill_sessions recovers such sessions from
    Stripe's session list.

Usage:
    from payments.services import EscrowSessionService

    result = EscrowSessionService.create_escrow_session(
        amount_cents=2000,
        payer=seller,
        payee_account_id="acct_123",
        metadata={"promotion_id": str(promotion.id), "creator_id": str(creator.id)},
        product_name=promotion.title,
    )
    if result.success:
        redirect(result.data.url)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import DatabaseError

from core.services import BaseService, ServiceResult

from payments.adapters import IdempotencyKeyGenerator, StripeAdapter
from payments.exceptions import (
    PaymentNotFoundError,
    PaymentPersistenceError,
    StripeError,
)
from payments.models import Payment

if TYPE_CHECKING:
    from authentication.models import User


logger = logging.getLogger(__name__)

REQUIRED_METADATA_KEYS = ("promotion_id", "creator_id")

# Marks sessions created by this service so the sweep can tell them apart
ESCROW_SESSION_KIND = "escrow"


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class EscrowSessionResult:
    """
    Result of opening an escrow checkout session.

    Attributes:
        session_id: Stripe Checkout Session ID (cs_xxx)
        url: Hosted checkout page the payer is redirected to
        payment: The PENDING Payment row recorded for the session
    """

    session_id: str
    url: str | None
    payment: Payment


@dataclass
class SessionStatusResult:
    """
    Status of a checkout session for UI polling.

    Attributes:
        payment: Local Payment row (authoritative state)
        checkout_status: Stripe session status, None if Stripe was unreachable
        checkout_payment_status: Stripe payment status, None if unreachable
    """

    payment: Payment
    checkout_status: str | None = None
    checkout_payment_status: str | None = None


# =============================================================================
# Escrow Session Service
# =============================================================================


class EscrowSessionService(BaseService):
    """
    Service for opening escrow checkout sessions.

    The caller is responsible for checking that the payee account has
    finished onboarding; this service does not re-verify it.
    """

    # Stripe adapter - can be injected for testing
    _stripe_adapter: type | None = None

    @classmethod
    def get_stripe_adapter(cls) -> type:
        """Get the Stripe adapter class."""
        return cls._stripe_adapter or StripeAdapter

    @classmethod
    def set_stripe_adapter(cls, adapter: type | None) -> None:
        """Set the Stripe adapter class (for testing)."""
        cls._stripe_adapter = adapter

    @classmethod
    def create_escrow_session(
        cls,
        amount_cents: int,
        payer: User,
        payee_account_id: str,
        metadata: dict[str, str],
        product_name: str = "Promotion escrow",
    ) -> ServiceResult[EscrowSessionResult]:
        """
        Open a hosted checkout session and record a PENDING payment.

        The payment id is reserved before the Stripe call. It is the
        per-request component of the idempotency key, and it is written
        into the session as client_reference_id and transfer_group.

        Args:
            amount_cents: Gross amount in minor units, must be positive
            payer: Seller paying into escrow
            payee_account_id: Creator's Stripe account (acct_xxx)
            metadata: Must contain promotion_id and creator_id
            product_name: Line item name shown on the checkout page

        Returns:
            ServiceResult containing EscrowSessionResult
        """
        if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
            return ServiceResult.failure(
                "Amount must be a positive integer number of cents",
                error_code="VALIDATION_ERROR",
                errors={"amount": ["Must be a positive integer."]},
            )

        metadata = metadata or {}
        validation = cls.validate_required(
            **{key: metadata.get(key) for key in REQUIRED_METADATA_KEYS},
            payee_account_id=payee_account_id,
        )
        if validation:
            return validation

        payment_id = uuid.uuid4()
        payment_metadata = {
            "promotion_id": str(metadata["promotion_id"]),
            "creator_id": str(metadata["creator_id"]),
        }
        log_context = {
            "payment_id": str(payment_id),
            "payer_id": str(payer.pk),
            "promotion_id": payment_metadata["promotion_id"],
            "amount_cents": amount_cents,
        }

        cls.get_logger().info("Creating escrow checkout session", extra=log_context)

        frontend_url = settings.FRONTEND_URL.rstrip("/")
        try:
            session = cls.get_stripe_adapter().create_checkout_session(
                payment_id=payment_id,
                amount_cents=amount_cents,
                currency=settings.PAYMENT_CURRENCY,
                product_name=product_name,
                success_url=f"{frontend_url}{settings.CHECKOUT_SUCCESS_PATH}",
                cancel_url=f"{frontend_url}{settings.CHECKOUT_CANCEL_PATH}",
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "create_session", payment_id
                ),
                metadata={
                    **payment_metadata,
                    "payer_id": str(payer.pk),
                    "payee_account_id": payee_account_id,
                    "kind": ESCROW_SESSION_KIND,
                },
                customer_email=payer.email,
            )
        except StripeError as e:
            return cls.handle_exception(
                e, "Failed to create checkout session", extra=log_context
            )

        log_context["stripe_session_id"] = session.id

        try:
            payment, created = Payment.objects.get_or_create(
                stripe_session_id=session.id,
                defaults={
                    "id": payment_id,
                    "payer": payer,
                    "amount_cents": amount_cents,
                    "metadata": payment_metadata,
                },
            )
        except DatabaseError:
            cls.get_logger().error(
                "Failed to store payment after Stripe session creation - reconciliation needed",
                extra={**log_context, "reconciliation_needed": True},
                exc_info=True,
            )
            return ServiceResult.from_exception(
                PaymentPersistenceError(
                    "Checkout session was created but the payment could not be saved"
                )
            )

        if not created:
            cls.get_logger().warning(
                "Payment for session already recorded",
                extra={**log_context, "existing_payment_id": str(payment.id)},
            )

        cls.get_logger().info("Escrow checkout session created", extra=log_context)

        return ServiceResult.success(
            EscrowSessionResult(session_id=session.id, url=session.url, payment=payment)
        )

    @classmethod
    def verify_session(
        cls,
        session_id: str,
        actor: User,
    ) -> ServiceResult[SessionStatusResult]:
        """
        Report the state of a checkout session for UI polling.

        This is a read. It never transitions the payment; the stored
        status only changes through webhooks.

        Args:
            session_id: Checkout Session ID (cs_xxx)
            actor: User asking, must be the payer or a platform admin

        Returns:
            ServiceResult containing SessionStatusResult
        """
        payment = Payment.objects.filter(stripe_session_id=session_id).first()
        if payment is None:
            return ServiceResult.from_exception(
                PaymentNotFoundError(f"No payment for session {session_id}")
            )

        if payment.payer_id != actor.pk and not actor.is_platform_admin:
            return ServiceResult.failure(
                "You do not have access to this payment",
                error_code="PERMISSION_DENIED",
            )

        result = SessionStatusResult(payment=payment)
        try:
            session = cls.get_stripe_adapter().retrieve_checkout_session(session_id)
        except StripeError as e:
            cls.get_logger().warning(
                "Could not read checkout session from Stripe",
                extra={
                    "payment_id": str(payment.id),
                    "stripe_session_id": session_id,
                    "error_code": e.error_code,
                },
            )
            return ServiceResult.success(result)

        result.checkout_status = session.status
        result.checkout_payment_status = session.payment_status
        return ServiceResult.success(result)
