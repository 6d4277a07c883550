"""
Webhook handling for payment events from Stripe.

Webhooks are verified, stored idempotently, and applied synchronously
through conditional payment transitions.

Usage:
    # In urls.py
    from payments.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhook", stripe_webhook, name="stripe-webhook"),
    ]
"""

from payments.webhooks.handlers import (
    dispatch_webhook,
    process_webhook_event,
    register_handler,
)
from payments.webhooks.views import stripe_webhook

__all__ = [
    "dispatch_webhook",
    "process_webhook_event",
    "register_handler",
    "stripe_webhook",
]
