"""
Campaigns app configuration.

Holds the promotion requests sellers publish and creators fulfil. Only
the parts the escrow payment flow relies on live here.
"""

from django.apps import AppConfig


class CampaignsConfig(AppConfig):
    """Configuration for the campaigns application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "campaigns"
    verbose_name = "Campaigns"
