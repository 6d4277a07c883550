"""
PayeeAccount model for Stripe Connect integration.

A PayeeAccount is the Stripe Connected Account that receives escrow
releases. Each creator has at most one, linked to their user.

Usage:
    from payments.models import PayeeAccount

    account = PayeeAccount.objects.create(
        user=creator,
        stripe_account_id="acct_1234567890",
        onboarding_status=OnboardingStatus.IN_PROGRESS,
    )

    if account.onboarding_complete:
        # Escrow sessions and releases may target this account
        pass
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from payments.state_machines import OnboardingStatus


class PayeeAccount(UUIDPrimaryKeyMixin, BaseModel):
    """
    Links a creator to their Stripe Connect account.

    Fields:
        user: OneToOne link to the creator
        stripe_account_id: Unique Stripe Account ID (acct_xxx)
        onboarding_status: Current state of Stripe Connect onboarding
        payouts_enabled: Whether Stripe has enabled payouts
        charges_enabled: Whether Stripe has enabled charges
        details_submitted: Whether the creator finished the hosted form
        metadata: Flexible JSON storage for additional data

    Lifecycle:
        1. Account created when the creator starts onboarding (NOT_STARTED)
        2. Onboarding link handed to the creator (IN_PROGRESS)
        3. account.updated webhooks report verification progress
        4. Stripe enables payouts (COMPLETE)
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payee_account",
        help_text="Creator this payee account belongs to",
    )

    stripe_account_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Account ID (acct_xxx)",
    )

    onboarding_status = models.CharField(
        max_length=20,
        choices=OnboardingStatus.choices,
        default=OnboardingStatus.NOT_STARTED,
        db_index=True,
        help_text="Current Stripe Connect onboarding status",
    )

    payouts_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled payouts for this account",
    )

    charges_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled charges for this account",
    )

    details_submitted = models.BooleanField(
        default=False,
        help_text="Whether the account holder submitted onboarding details",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata (e.g., requirements snapshot)",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payee Account"
        verbose_name_plural = "Payee Accounts"

    def __str__(self) -> str:
        """Return string representation with Stripe ID and status."""
        return f"PayeeAccount({self.stripe_account_id}, {self.onboarding_status})"

    @property
    def onboarding_complete(self) -> bool:
        """
        Check if the account can receive escrow releases.

        An account is ready when onboarding is complete and Stripe has
        enabled payouts for it.
        """
        return (
            self.onboarding_status == OnboardingStatus.COMPLETE and self.payouts_enabled
        )
