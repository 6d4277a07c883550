"""
Reconciliation service for healing escrow state from Stripe.

Webhooks are the normal path for moving payments forward, but they can
be missed, and a process can die between a Stripe call and the local
write. This service periodically compares local state with Stripe and
heals what it finds.

Healing Categories:
    1. Orphan sessions: Stripe has an escrow checkout session with no
       local Payment (crash between session creation and persist).
       The row is rebuilt from the session metadata.
    2. Stale pending payments: Payment still PENDING although Stripe
       reports the session paid or expired.
    3. Stale release claims: release_claimed_at set long ago on a
       COMPLETED payment. Finalized if Stripe has the transfer,
       otherwise the claim is cleared so the release can be retried.

Every heal goes through the same conditional transitions the webhook
handlers use, so running the sweep concurrently with webhooks is safe.

Usage:
    from payments.services import ReconciliationService

    result = ReconciliationService.run_reconciliation(lookback_hours=24)
    if result.success:
        print(result.data.payments_backfilled)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.utils import timezone
from django_fsm import ConcurrentTransition, TransitionNotAllowed

from core.services import BaseService, ServiceResult

from payments.adapters import CheckoutSessionResult, StripeAdapter
from payments.exceptions import StripeError
from payments.models import Payment
from payments.services.escrow_release import EscrowReleaseService
from payments.services.escrow_session import ESCROW_SESSION_KIND
from payments.state_machines import PaymentStatus

if TYPE_CHECKING:
    from typing import Any


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_STALE_PENDING_MINUTES = 30
DEFAULT_MAX_RECORDS = 200


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class ReconciliationRunResult:
    """Summary of one reconciliation sweep."""

    sessions_checked: int = 0
    payments_backfilled: int = 0
    payments_completed: int = 0
    payments_failed: int = 0
    releases_finalized: int = 0
    claims_cleared: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def healed(self) -> int:
        return (
            self.payments_backfilled
            + self.payments_completed
            + self.payments_failed
            + self.releases_finalized
            + self.claims_cleared
        )


# =============================================================================
# Reconciliation Service
# =============================================================================


class ReconciliationService(BaseService):
    """
    Service for bringing local escrow state in line with Stripe.

    Stripe is the source of truth for whether money moved. Local state
    only ever moves forward, and only through conditional transitions.
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
    def run_reconciliation(
        cls,
        lookback_hours: int | None = None,
        stale_pending_minutes: int = DEFAULT_STALE_PENDING_MINUTES,
    ) -> ServiceResult[ReconciliationRunResult]:
        """
        Run every healing pass.

        Args:
            lookback_hours: How far back to list Stripe sessions
                (default: settings.RECONCILIATION_LOOKBACK_HOURS)
            stale_pending_minutes: Age after which a PENDING payment is
                checked against Stripe

        Returns:
            ServiceResult containing ReconciliationRunResult
        """
        if lookback_hours is None:
            lookback_hours = settings.RECONCILIATION_LOOKBACK_HOURS

        run = ReconciliationRunResult()
        cls.get_logger().info(
            "Starting escrow reconciliation",
            extra={
                "lookback_hours": lookback_hours,
                "stale_pending_minutes": stale_pending_minutes,
            },
        )

        try:
            cls.backfill_sessions(lookback_hours, run)
        except StripeError as e:
            return cls.handle_exception(e, "Failed to list checkout sessions")

        cls.heal_stale_pending(stale_pending_minutes, run)
        cls.recover_stale_release_claims(run)

        cls.get_logger().info(
            "Escrow reconciliation completed",
            extra={
                "sessions_checked": run.sessions_checked,
                "healed": run.healed,
                "error_count": len(run.errors),
            },
        )
        return ServiceResult.success(run)

    # =========================================================================
    # Orphan Sessions
    # =========================================================================

    @classmethod
    def backfill_sessions(
        cls,
        lookback_hours: int,
        run: ReconciliationRunResult | None = None,
    ) -> ReconciliationRunResult:
        """
        Create missing Payment rows for recent escrow checkout sessions.

        Only sessions tagged kind=escrow with a payment_id in their
        metadata are considered. Existing rows are synced with the
        session's state instead.

        Raises:
            StripeError: If the session list cannot be fetched
        """
        run = run or ReconciliationRunResult()
        created_after = timezone.now() - timedelta(hours=lookback_hours)
        sessions = cls.get_stripe_adapter().list_recent_checkout_sessions(
            created_after=created_after,
            limit=DEFAULT_MAX_RECORDS,
        )

        for session in sessions:
            if session.metadata.get("kind") != ESCROW_SESSION_KIND:
                continue
            run.sessions_checked += 1

            payment = Payment.objects.filter(stripe_session_id=session.id).first()
            if payment is None:
                payment = cls._backfill_payment(session, run)
                if payment is None:
                    continue
            cls._sync_payment_with_session(payment, session, run)

        return run

    @classmethod
    def _backfill_payment(
        cls,
        session: CheckoutSessionResult,
        run: ReconciliationRunResult,
    ) -> Payment | None:
        metadata = session.metadata
        log_context = {
            "stripe_session_id": session.id,
            "payment_id": metadata.get("payment_id"),
        }

        missing = [
            key
            for key in ("payment_id", "payer_id", "promotion_id", "creator_id")
            if not metadata.get(key)
        ]
        if missing or not session.amount_total:
            cls.get_logger().error(
                "Escrow session cannot be backfilled",
                extra={**log_context, "missing_metadata": missing},
            )
            run.errors.append({**log_context, "error": "incomplete session metadata"})
            return None

        payer = get_user_model().objects.filter(pk=metadata["payer_id"]).first()
        if payer is None:
            cls.get_logger().error(
                "Payer of orphan escrow session not found",
                extra={**log_context, "payer_id": metadata["payer_id"]},
            )
            run.errors.append({**log_context, "error": "payer not found"})
            return None

        try:
            payment, created = Payment.objects.get_or_create(
                stripe_session_id=session.id,
                defaults={
                    "id": metadata["payment_id"],
                    "payer": payer,
                    "amount_cents": session.amount_total,
                    "currency": session.currency or settings.PAYMENT_CURRENCY,
                    "metadata": {
                        "promotion_id": metadata["promotion_id"],
                        "creator_id": metadata["creator_id"],
                    },
                },
            )
        except DatabaseError as e:
            cls.get_logger().error(
                "Failed to backfill payment",
                extra=log_context,
                exc_info=True,
            )
            run.errors.append({**log_context, "error": str(e)})
            return None

        if created:
            run.payments_backfilled += 1
            cls.get_logger().warning(
                "Backfilled payment for orphan checkout session",
                extra=log_context,
            )
        return payment

    # =========================================================================
    # Stale Pending Payments
    # =========================================================================

    @classmethod
    def heal_stale_pending(
        cls,
        stale_pending_minutes: int = DEFAULT_STALE_PENDING_MINUTES,
        run: ReconciliationRunResult | None = None,
    ) -> ReconciliationRunResult:
        """
        Check old PENDING payments against their Stripe sessions.
        """
        run = run or ReconciliationRunResult()
        cutoff = timezone.now() - timedelta(minutes=stale_pending_minutes)
        payments = Payment.objects.filter(
            status=PaymentStatus.PENDING,
            created_at__lt=cutoff,
        ).order_by("created_at")[:DEFAULT_MAX_RECORDS]

        for payment in payments:
            try:
                session = cls.get_stripe_adapter().retrieve_checkout_session(
                    payment.stripe_session_id
                )
            except StripeError as e:
                cls.get_logger().warning(
                    "Could not fetch session for pending payment",
                    extra={
                        "payment_id": str(payment.id),
                        "stripe_session_id": payment.stripe_session_id,
                        "error_code": e.error_code,
                    },
                )
                run.errors.append(
                    {"payment_id": str(payment.id), "error": e.error_code}
                )
                continue
            cls._sync_payment_with_session(payment, session, run)

        return run

    @classmethod
    def _sync_payment_with_session(
        cls,
        payment: Payment,
        session: CheckoutSessionResult,
        run: ReconciliationRunResult,
    ) -> None:
        if payment.status != PaymentStatus.PENDING:
            return

        log_context = {
            "payment_id": str(payment.id),
            "stripe_session_id": session.id,
        }
        try:
            if session.is_paid:
                payment.complete(charge_id=session.payment_intent_id)
                payment.save()
                run.payments_completed += 1
                cls.get_logger().warning(
                    "Completed payment missed by webhooks", extra=log_context
                )
            elif session.status == "expired":
                payment.fail(reason="Checkout session expired")
                payment.save()
                run.payments_failed += 1
                cls.get_logger().warning(
                    "Failed payment for expired session", extra=log_context
                )
        except (ConcurrentTransition, TransitionNotAllowed):
            cls.get_logger().info(
                "Payment moved concurrently, nothing to heal", extra=log_context
            )
        except DatabaseError as e:
            cls.get_logger().error(
                "Failed to heal pending payment", extra=log_context, exc_info=True
            )
            run.errors.append({**log_context, "error": str(e)})

    # =========================================================================
    # Stale Release Claims
    # =========================================================================

    @classmethod
    def recover_stale_release_claims(
        cls,
        run: ReconciliationRunResult | None = None,
    ) -> ReconciliationRunResult:
        """
        Resolve release claims whose holder never finished.

        If Stripe has a transfer in the payment's group the release is
        finalized from it. Otherwise the claim is cleared, guarded on the
        claim timestamp so a fresh claim is never cleared.
        """
        run = run or ReconciliationRunResult()
        cutoff = timezone.now() - timedelta(
            seconds=settings.ESCROW_RELEASE_CLAIM_TIMEOUT_SECONDS
        )
        payments = Payment.objects.filter(
            status=PaymentStatus.COMPLETED,
            release_claimed_at__lt=cutoff,
        ).order_by("release_claimed_at")[:DEFAULT_MAX_RECORDS]

        for payment in payments:
            log_context = {"payment_id": str(payment.id)}
            try:
                transfer = cls.get_stripe_adapter().find_transfer_for_payment(payment.id)
            except StripeError as e:
                run.errors.append({**log_context, "error": e.error_code})
                continue

            if transfer is not None:
                result = EscrowReleaseService.finalize_from_transfer(payment.id, transfer)
                if result.success:
                    run.releases_finalized += 1
                else:
                    run.errors.append({**log_context, "error": result.error_code})
                continue

            cleared = Payment.objects.filter(
                id=payment.id,
                status=PaymentStatus.COMPLETED,
                release_claimed_at=payment.release_claimed_at,
            ).update(release_claimed_at=None)
            if cleared:
                run.claims_cleared += 1
                cls.get_logger().warning(
                    "Cleared stale release claim with no transfer", extra=log_context
                )

        return run
