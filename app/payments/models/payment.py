"""
Payment model for the escrow lifecycle.

A Payment is created when a seller opens a hosted checkout session, and
is moved forward by gateway webhooks and the release operation:

    pending -> completed -> released
    pending -> failed

Usage:
    from payments.models import Payment
    from payments.state_machines import PaymentStatus

    payment = Payment.objects.create(
        payer=seller,
        amount_cents=2000,
        stripe_session_id="cs_test_123",
        metadata={"promotion_id": str(promotion.id), "creator_id": str(creator.id)},
    )

    # Transitions are conditional updates on the prior status
    payment.complete(charge_id="pi_123")
    payment.save()  # UPDATE ... WHERE id = X AND status = 'pending'
"""

from __future__ import annotations

import copy

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import ConcurrentTransitionMixin, FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from payments.exceptions import PaymentValidationError
from payments.state_machines import PaymentStatus

WRITE_ONCE_FIELDS = ("amount_cents", "metadata", "stripe_session_id", "payer_id")


def _default_currency() -> str:
    return settings.PAYMENT_CURRENCY


class Payment(ConcurrentTransitionMixin, UUIDPrimaryKeyMixin, BaseModel):
    """
    Funds held by the platform on behalf of a seller until release.

    ConcurrentTransitionMixin makes every save() after a transition an
    UPDATE filtered on the status the row was loaded with. Two workers
    applying the same transition race on that filter; the loser gets
    django_fsm.ConcurrentTransition instead of overwriting the winner.

    Fields:
        payer: User who paid through the checkout session
        amount_cents: Gross amount in minor units (write-once, > 0)
        currency: Deployment-wide ISO 4217 code
        status: Current FSM state
        stripe_session_id: Checkout Session ID (cs_xxx), unique
        stripe_charge_id: PaymentIntent ID (pi_xxx), set on completion
        stripe_transfer_id: Transfer ID (tr_xxx), set on release
        failure_reason: Why the checkout failed
        metadata: {"promotion_id", "creator_id"} (write-once)
        release_claimed_at: Set by the release attempt holding the claim

    Note:
        Payments are never deleted. Every relation pointing here or from
        here uses PROTECT.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="User making the payment",
    )

    # ==========================================================================
    # Amount & Currency
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Payment amount in smallest currency unit (e.g., cents)",
    )

    currency = models.CharField(
        max_length=3,
        default=_default_currency,
        help_text="ISO 4217 currency code (lowercase)",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PaymentStatus.PENDING,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the payment (managed by FSM)",
    )

    # ==========================================================================
    # Stripe Integration
    # ==========================================================================

    stripe_session_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Checkout Session ID (cs_xxx)",
    )

    stripe_charge_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Stripe PaymentIntent ID (pi_xxx) of the completed checkout",
    )

    stripe_transfer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe Transfer ID (tr_xxx) created on release",
    )

    # ==========================================================================
    # Release Accounting
    # ==========================================================================

    platform_fee_cents = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Fee retained by the platform on release",
    )

    transfer_amount_cents = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Net amount transferred to the payee on release",
    )

    release_claimed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When a release attempt claimed this payment",
    )

    # ==========================================================================
    # State Timestamps
    # ==========================================================================

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the gateway confirmed the checkout",
    )

    failed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the checkout failed",
    )

    released_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When funds were transferred to the payee",
    )

    # ==========================================================================
    # Metadata & Error Info
    # ==========================================================================

    metadata = models.JSONField(
        default=dict,
        help_text="Promotion and creator the payment is held for",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Detailed reason if payment failed",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(
                fields=["payer", "created_at"], name="payment_payer_created_idx"
            ),
            models.Index(
                fields=["status", "created_at"], name="payment_status_created_idx"
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="payment_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with ID, status, and amount."""
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency.upper()}"
        return f"Payment({self.id}, {self.status}, {amount_display})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_values = {
            name: copy.deepcopy(getattr(instance, name))
            for name in WRITE_ONCE_FIELDS
            if name in field_names
        }
        return instance

    def save(self, *args, **kwargs):
        """
        Save, refusing changes to write-once fields on existing rows.

        Raises:
            PaymentValidationError: If amount, metadata, session id or
                payer differ from the values loaded from the database
        """
        loaded = getattr(self, "_loaded_values", None)
        if loaded:
            changed = [
                name for name, value in loaded.items() if getattr(self, name) != value
            ]
            if changed:
                raise PaymentValidationError(
                    "Write-once payment fields cannot be modified",
                    details={"payment_id": str(self.pk), "fields": changed},
                )
        super().save(*args, **kwargs)
        self._loaded_values = {
            name: copy.deepcopy(getattr(self, name)) for name in WRITE_ONCE_FIELDS
        }

    # ==========================================================================
    # Convenience accessors
    # ==========================================================================

    @property
    def promotion_id(self) -> str | None:
        return self.metadata.get("promotion_id")

    @property
    def creator_id(self) -> str | None:
        return self.metadata.get("creator_id")

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.COMPLETED,
    )
    def complete(self, charge_id: str | None = None):
        """
        Mark the checkout as paid.

        Transition: PENDING -> COMPLETED

        Args:
            charge_id: PaymentIntent ID used later as the transfer source
        """
        self.stripe_charge_id = charge_id
        if self.completed_at is None:
            self.completed_at = timezone.now()

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.FAILED,
    )
    def fail(self, reason: str | None = None):
        """
        Mark the checkout as failed.

        Transition: PENDING -> FAILED
        """
        self.failure_reason = reason or "Payment failed"
        self.failed_at = timezone.now()

    @transition(
        field=status,
        source=PaymentStatus.COMPLETED,
        target=PaymentStatus.RELEASED,
    )
    def release(
        self,
        transfer_id: str,
        platform_fee_cents: int,
        transfer_amount_cents: int,
    ):
        """
        Record the transfer of the net amount to the payee.

        Transition: COMPLETED -> RELEASED
        """
        self.stripe_transfer_id = transfer_id
        self.platform_fee_cents = platform_fee_cents
        self.transfer_amount_cents = transfer_amount_cents
        self.released_at = timezone.now()

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_releasable(self) -> bool:
        """Funds are held and may be transferred to the creator."""
        return self.status == PaymentStatus.COMPLETED
