"""
Payments app configuration.

This app provides the escrow payment core:
- Stripe Connect payee accounts for creators
- Checkout sessions paying into platform custody
- Webhook-driven payment state machine
- Escrow release transfers and reconciliation
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
