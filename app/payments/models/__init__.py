"""
Payment domain models.

This module contains all payment-related models:
- Payment: Escrow payment tracking pending -> completed -> released
- PayeeAccount: Stripe Connect accounts for creators
- WebhookEvent: Stripe webhook event audit trail
"""

from payments.models.payee_account import PayeeAccount
from payments.models.payment import Payment
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "PayeeAccount",
    "Payment",
    "WebhookEvent",
]
