"""
Account linking service for creator payee accounts.

Creates the Stripe Connect account a creator receives escrow releases
into, and hands out hosted onboarding links for it.

Usage:
    from payments.services import AccountLinkingService

    result = AccountLinkingService.create_or_get_payee_account(creator)
    if result.success:
        link = AccountLinkingService.create_onboarding_link(result.data.stripe_account_id)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import DatabaseError, IntegrityError

from core.services import BaseService, ServiceResult

from payments.adapters import AccountLinkResult, IdempotencyKeyGenerator, StripeAdapter
from payments.exceptions import PaymentPersistenceError, StripeError
from payments.models import PayeeAccount
from payments.state_machines import OnboardingStatus

if TYPE_CHECKING:
    from authentication.models import User


logger = logging.getLogger(__name__)


class AccountLinkingService(BaseService):
    """
    Service for linking creators to Stripe Connect payee accounts.

    A creator has at most one payee account. Asking for it again returns
    the stored account without calling Stripe.
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
    def create_or_get_payee_account(cls, user: User) -> ServiceResult[PayeeAccount]:
        """
        Return the creator's payee account, creating it at Stripe if needed.

        The Stripe call carries an idempotency key derived from the user
        id, so two concurrent first requests resolve to the same Stripe
        account. The unique constraint on user then lets exactly one
        insert win; the loser re-reads the winner's row.

        Args:
            user: Creator requesting onboarding

        Returns:
            ServiceResult containing the PayeeAccount
        """
        existing = PayeeAccount.objects.filter(user=user).first()
        if existing is not None:
            cls.get_logger().debug(
                "Payee account already exists",
                extra={
                    "user_id": str(user.pk),
                    "stripe_account_id": existing.stripe_account_id,
                },
            )
            return ServiceResult.success(existing)

        adapter = cls.get_stripe_adapter()
        try:
            account = adapter.create_payee_account(
                email=user.email,
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "create_account", user.pk
                ),
                metadata={"user_id": str(user.pk)},
            )
        except StripeError as e:
            return cls.handle_exception(
                e,
                "Failed to create payee account",
                extra={"user_id": str(user.pk)},
            )

        try:
            with cls.atomic():
                payee_account = PayeeAccount.objects.create(
                    user=user,
                    stripe_account_id=account.id,
                    onboarding_status=OnboardingStatus.IN_PROGRESS,
                    payouts_enabled=account.payouts_enabled,
                    charges_enabled=account.charges_enabled,
                    details_submitted=account.details_submitted,
                )
        except IntegrityError:
            payee_account = PayeeAccount.objects.filter(user=user).first()
            if payee_account is None:
                raise
            cls.get_logger().info(
                "Payee account created concurrently, using existing row",
                extra={
                    "user_id": str(user.pk),
                    "stripe_account_id": payee_account.stripe_account_id,
                },
            )
            return ServiceResult.success(payee_account)
        except DatabaseError:
            cls.get_logger().error(
                "Failed to store payee account after Stripe success - reconciliation needed",
                extra={
                    "user_id": str(user.pk),
                    "stripe_account_id": account.id,
                    "reconciliation_needed": True,
                },
                exc_info=True,
            )
            return ServiceResult.from_exception(
                PaymentPersistenceError("Payee account was created but could not be saved")
            )

        cls.get_logger().info(
            "Payee account created",
            extra={
                "user_id": str(user.pk),
                "stripe_account_id": payee_account.stripe_account_id,
            },
        )
        return ServiceResult.success(payee_account)

    @classmethod
    def create_onboarding_link(cls, account_id: str) -> ServiceResult[AccountLinkResult]:
        """
        Create a single-use hosted onboarding link for a payee account.

        Args:
            account_id: Stripe Account ID (acct_xxx)

        Returns:
            ServiceResult containing the AccountLinkResult
        """
        validation = cls.validate_required(account_id=account_id)
        if validation:
            return validation

        frontend_url = settings.FRONTEND_URL.rstrip("/")
        try:
            link = cls.get_stripe_adapter().create_onboarding_link(
                account_id=account_id,
                refresh_url=f"{frontend_url}{settings.STRIPE_ONBOARDING_REFRESH_PATH}",
                return_url=f"{frontend_url}{settings.STRIPE_ONBOARDING_RETURN_PATH}",
            )
        except StripeError as e:
            return cls.handle_exception(
                e,
                "Failed to create onboarding link",
                extra={"stripe_account_id": account_id},
            )

        return ServiceResult.success(link)
