"""
Payment services for coordinating escrow operations.

This module provides:
- AccountLinkingService: Creator payee accounts and onboarding links
- EscrowSessionService: Hosted checkout sessions paying into escrow
- EscrowReleaseService: Transfers of held funds to creators
- ReconciliationService: Heals local state from Stripe

Usage:
    from payments.services import EscrowSessionService

    result = EscrowSessionService.create_escrow_session(
        amount_cents=2000,
        payer=seller,
        payee_account_id="acct_123",
        metadata={"promotion_id": str(promotion.id), "creator_id": str(creator.id)},
    )

    # Release once the webhook marked the payment completed
    from payments.services import EscrowReleaseService

    result = EscrowReleaseService.release_escrow(payment_id, seller)

    # Run reconciliation
    from payments.services import ReconciliationService

    result = ReconciliationService.run_reconciliation(lookback_hours=24)
"""

from payments.services.account_linking import AccountLinkingService
from payments.services.escrow_release import (
    EscrowReleaseService,
    ReleaseResult,
    calculate_platform_fee,
)
from payments.services.escrow_session import (
    EscrowSessionResult,
    EscrowSessionService,
    SessionStatusResult,
)
from payments.services.reconciliation_service import (
    ReconciliationRunResult,
    ReconciliationService,
)

__all__ = [
    "AccountLinkingService",
    "EscrowReleaseService",
    "EscrowSessionResult",
    "EscrowSessionService",
    "ReconciliationRunResult",
    "ReconciliationService",
    "ReleaseResult",
    "SessionStatusResult",
    "calculate_platform_fee",
]
