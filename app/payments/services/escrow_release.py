"""
Escrow release service for paying creators out of held funds.

Moves a COMPLETED payment to RELEASED by transferring the net amount to
the creator's Stripe Connect account and closing the promotion request.

The release follows a claim-then-transfer pattern:
1. Claim: conditional UPDATE sets release_claimed_at only while the
   payment is COMPLETED and unclaimed. Exactly one caller wins.
2. Transfer: only the winner calls Stripe, with the idempotency key
   "release:<payment_id>" and transfer_group = payment id.
3. Finalize: one transaction marks the payment RELEASED and the
   promotion request COMPLETED.

A caller that loses the claim never creates a transfer. It looks the
transfer up by transfer_group and finalizes with what Stripe already has,
or reports that a release is in progress.

Usage:
    from payments.services import EscrowReleaseService

    result = EscrowReleaseService.release_escrow(payment_id, request.user)
    if result.success:
        print(result.data.transfer_id, result.data.already_released)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import DatabaseError
from django.utils import timezone
from django_fsm import ConcurrentTransition, TransitionNotAllowed

from campaigns.models import PromotionRequest, PromotionStatus
from core.services import BaseService, ServiceResult

from payments.adapters import StripeAdapter, TransferResult, release_idempotency_key
from payments.exceptions import (
    InvalidStateTransitionError,
    PaymentNotFoundError,
    StripeError,
)
from payments.models import PayeeAccount, Payment
from payments.state_machines import PaymentStatus

if TYPE_CHECKING:
    from authentication.models import User


logger = logging.getLogger(__name__)


def calculate_platform_fee(amount_cents: int, fee_percent=None) -> int:
    """
    Platform fee in minor units, rounded half-up.

    Args:
        amount_cents: Gross payment amount
        fee_percent: Percentage to retain (default: settings.PLATFORM_FEE_PERCENT)

    Example:
        calculate_platform_fee(1000)  # 100 at 10%
        calculate_platform_fee(1005)  # 101 at 10% (100.5 rounds up)
    """
    if fee_percent is None:
        fee_percent = settings.PLATFORM_FEE_PERCENT
    fee = Decimal(amount_cents) * Decimal(str(fee_percent)) / Decimal(100)
    return int(fee.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class ReleaseResult:
    """
    Result of an escrow release.

    Attributes:
        payment: The Payment, RELEASED
        transfer_id: Stripe Transfer ID (tr_xxx)
        transfer_amount_cents: Net amount sent to the creator
        platform_fee_cents: Amount retained by the platform
        already_released: True when an earlier call did the release
    """

    payment: Payment
    transfer_id: str
    transfer_amount_cents: int
    platform_fee_cents: int
    already_released: bool = False


# =============================================================================
# Escrow Release Service
# =============================================================================


class EscrowReleaseService(BaseService):
    """
    Service for releasing escrowed funds to creators.

    Safety Guarantees:
        - At most one transfer per payment: the claim admits one caller,
          and the stable idempotency key collapses retries at Stripe
        - Losers and retries only read transfers, never create them
        - RELEASED and PromotionRequest COMPLETED are written together
        - A transfer failure clears the claim and leaves the payment
          COMPLETED, so the release can be retried
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
    def release_escrow(
        cls,
        payment_id: uuid.UUID | str,
        actor: User,
    ) -> ServiceResult[ReleaseResult]:
        """
        Release a completed payment to its creator.

        Args:
            payment_id: UUID of the Payment to release
            actor: Requesting user, must be the payer or a platform admin

        Returns:
            ServiceResult containing ReleaseResult. Failure codes:
            PAYMENT_NOT_FOUND, PERMISSION_DENIED, INVALID_STATE_TRANSITION,
            PAYEE_NOT_ONBOARDED, RELEASE_IN_PROGRESS, Stripe error codes,
            PERSISTENCE_ERROR
        """
        log_context = {"payment_id": str(payment_id), "actor_id": str(actor.pk)}
        cls.get_logger().info("Starting escrow release", extra=log_context)

        payment = Payment.objects.filter(id=payment_id).first()
        if payment is None:
            return ServiceResult.from_exception(
                PaymentNotFoundError(f"Payment {payment_id} not found")
            )

        if payment.payer_id != actor.pk and not actor.is_platform_admin:
            cls.get_logger().warning("Release denied for non-owner", extra=log_context)
            return ServiceResult.failure(
                "Only the payer or a platform admin can release this payment",
                error_code="PERMISSION_DENIED",
            )

        if payment.status == PaymentStatus.RELEASED:
            return cls._already_released(payment)

        if not payment.is_releasable:
            return cls._invalid_state(payment)

        payee_account = PayeeAccount.objects.filter(user_id=payment.creator_id).first()
        if payee_account is None or not payee_account.onboarding_complete:
            cls.get_logger().warning(
                "Creator payee account not ready for release",
                extra={**log_context, "creator_id": payment.creator_id},
            )
            return ServiceResult.failure(
                "Creator has not completed payee onboarding",
                error_code="PAYEE_NOT_ONBOARDED",
            )

        platform_fee_cents = calculate_platform_fee(payment.amount_cents)
        transfer_amount_cents = payment.amount_cents - platform_fee_cents
        if transfer_amount_cents <= 0:
            return ServiceResult.failure(
                "Nothing left to transfer after the platform fee",
                error_code="VALIDATION_ERROR",
            )

        # Step 1: Claim
        claimed = Payment.objects.filter(
            id=payment.id,
            status=PaymentStatus.COMPLETED,
            release_claimed_at__isnull=True,
        ).update(release_claimed_at=timezone.now())

        if not claimed:
            cls.get_logger().info(
                "Release already claimed, checking for existing transfer",
                extra=log_context,
            )
            return cls._resolve_contended_release(payment.id, payee_account)

        # Step 2 and 3: Transfer and finalize
        return cls._transfer_and_finalize(
            payment, payee_account, platform_fee_cents, transfer_amount_cents
        )

    # =========================================================================
    # Claim Winner
    # =========================================================================

    @classmethod
    def _transfer_and_finalize(
        cls,
        payment: Payment,
        payee_account: PayeeAccount,
        platform_fee_cents: int,
        transfer_amount_cents: int,
    ) -> ServiceResult[ReleaseResult]:
        """
        Create the release transfer and record it.

        A transfer already present in the payment's transfer_group is
        reused. Stripe only remembers idempotency keys for 24 hours, so
        the lookup is what keeps a late retry from paying twice.
        """
        adapter = cls.get_stripe_adapter()
        log_context = {
            "payment_id": str(payment.id),
            "destination_account": payee_account.stripe_account_id,
            "transfer_amount_cents": transfer_amount_cents,
            "platform_fee_cents": platform_fee_cents,
        }

        try:
            transfer = adapter.find_transfer_for_payment(payment.id)
            if transfer is None:
                cls.get_logger().info("Creating release transfer", extra=log_context)
                transfer = adapter.create_transfer(
                    amount_cents=transfer_amount_cents,
                    destination_account=payee_account.stripe_account_id,
                    idempotency_key=release_idempotency_key(payment.id),
                    transfer_group=str(payment.id),
                    currency=payment.currency,
                    metadata={
                        "payment_id": str(payment.id),
                        "promotion_id": payment.promotion_id or "",
                        "creator_id": payment.creator_id or "",
                    },
                    source_transaction=payment.stripe_charge_id,
                )
            else:
                cls.get_logger().info(
                    "Release transfer already exists at Stripe",
                    extra={**log_context, "stripe_transfer_id": transfer.id},
                )
        except StripeError as e:
            cls._clear_claim(payment.id)
            cls.get_logger().error(
                f"Release transfer failed: {type(e).__name__}",
                extra={
                    **log_context,
                    "error_code": e.error_code,
                    "is_retryable": e.is_retryable,
                },
            )
            return ServiceResult.failure(
                e.message,
                error_code=e.error_code,
                retryable=True,
            )

        return cls.finalize_from_transfer(payment.id, transfer)

    @classmethod
    def _clear_claim(cls, payment_id: uuid.UUID) -> None:
        try:
            Payment.objects.filter(
                id=payment_id,
                status=PaymentStatus.COMPLETED,
            ).update(release_claimed_at=None)
        except DatabaseError:
            cls.get_logger().error(
                "Failed to clear release claim",
                extra={"payment_id": str(payment_id)},
                exc_info=True,
            )

    # =========================================================================
    # Claim Losers and Retries
    # =========================================================================

    @classmethod
    def _resolve_contended_release(
        cls,
        payment_id: uuid.UUID,
        payee_account: PayeeAccount,
    ) -> ServiceResult[ReleaseResult]:
        """
        Handle a release whose claim is held by someone else.

        Finalizes from the existing Stripe transfer when there is one.
        A claim older than ESCROW_RELEASE_CLAIM_TIMEOUT_SECONDS with no
        transfer behind it is taken over; the takeover is itself a
        conditional update, so only one caller proceeds.
        """
        payment = Payment.objects.get(id=payment_id)
        log_context = {"payment_id": str(payment_id)}

        if payment.status == PaymentStatus.RELEASED:
            return cls._already_released(payment)
        if not payment.is_releasable:
            return cls._invalid_state(payment)

        try:
            transfer = cls.get_stripe_adapter().find_transfer_for_payment(payment.id)
        except StripeError as e:
            return cls.handle_exception(
                e, "Failed to look up release transfer", extra=log_context
            )

        if transfer is not None:
            cls.get_logger().info(
                "Finalizing release from existing transfer",
                extra={**log_context, "stripe_transfer_id": transfer.id},
            )
            return cls.finalize_from_transfer(payment.id, transfer)

        claimed_at = payment.release_claimed_at
        timeout = timedelta(seconds=settings.ESCROW_RELEASE_CLAIM_TIMEOUT_SECONDS)
        if claimed_at is not None and timezone.now() - claimed_at > timeout:
            taken_over = Payment.objects.filter(
                id=payment.id,
                status=PaymentStatus.COMPLETED,
                release_claimed_at=claimed_at,
            ).update(release_claimed_at=timezone.now())
            if taken_over:
                cls.get_logger().warning(
                    "Taking over stale release claim",
                    extra={**log_context, "claimed_at": claimed_at.isoformat()},
                )
                platform_fee_cents = calculate_platform_fee(payment.amount_cents)
                return cls._transfer_and_finalize(
                    payment,
                    payee_account,
                    platform_fee_cents,
                    payment.amount_cents - platform_fee_cents,
                )

        return ServiceResult.failure(
            "A release for this payment is already in progress",
            error_code="RELEASE_IN_PROGRESS",
            retryable=True,
        )

    # =========================================================================
    # Finalize
    # =========================================================================

    @classmethod
    def finalize_from_transfer(
        cls,
        payment_id: uuid.UUID,
        transfer: TransferResult,
    ) -> ServiceResult[ReleaseResult]:
        """
        Record the transfer: payment RELEASED and promotion COMPLETED.

        Amounts are taken from the transfer itself so a finalize after a
        lookup records what was actually sent.
        """
        log_context = {
            "payment_id": str(payment_id),
            "stripe_transfer_id": transfer.id,
        }

        try:
            with cls.atomic():
                payment = Payment.objects.get(id=payment_id)
                if payment.status == PaymentStatus.RELEASED:
                    return cls._already_released(payment)

                payment.release(
                    transfer_id=transfer.id,
                    platform_fee_cents=payment.amount_cents - transfer.amount_cents,
                    transfer_amount_cents=transfer.amount_cents,
                )
                payment.save()

                PromotionRequest.objects.filter(id=payment.promotion_id).exclude(
                    status=PromotionStatus.COMPLETED
                ).update(status=PromotionStatus.COMPLETED, completed_at=timezone.now())
        except ConcurrentTransition:
            payment = Payment.objects.get(id=payment_id)
            if payment.status == PaymentStatus.RELEASED:
                return cls._already_released(payment)
            return cls._invalid_state(payment)
        except TransitionNotAllowed:
            return cls._invalid_state(Payment.objects.get(id=payment_id))
        except DatabaseError:
            cls.get_logger().error(
                "Failed to record release after Stripe transfer - reconciliation needed",
                extra={**log_context, "reconciliation_needed": True},
                exc_info=True,
            )
            return ServiceResult.failure(
                "Transfer was created but the release could not be saved",
                error_code="PERSISTENCE_ERROR",
                retryable=True,
            )

        cls.get_logger().info(
            "Escrow released",
            extra={
                **log_context,
                "transfer_amount_cents": payment.transfer_amount_cents,
                "platform_fee_cents": payment.platform_fee_cents,
            },
        )
        return ServiceResult.success(
            ReleaseResult(
                payment=payment,
                transfer_id=transfer.id,
                transfer_amount_cents=payment.transfer_amount_cents,
                platform_fee_cents=payment.platform_fee_cents,
            )
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    def _already_released(cls, payment: Payment) -> ServiceResult[ReleaseResult]:
        cls.get_logger().info(
            "Payment already released, no transfer made",
            extra={
                "payment_id": str(payment.id),
                "stripe_transfer_id": payment.stripe_transfer_id,
            },
        )
        return ServiceResult.success(
            ReleaseResult(
                payment=payment,
                transfer_id=payment.stripe_transfer_id,
                transfer_amount_cents=payment.transfer_amount_cents,
                platform_fee_cents=payment.platform_fee_cents,
                already_released=True,
            )
        )

    @staticmethod
    def _invalid_state(payment: Payment) -> ServiceResult[ReleaseResult]:
        return ServiceResult.from_exception(
            InvalidStateTransitionError(
                f"Cannot release payment in '{payment.status}' state",
                details={"current_state": payment.status, "target_state": "released"},
            )
        )
