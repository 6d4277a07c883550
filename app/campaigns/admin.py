"""
Campaigns admin configuration.
"""

from django.contrib import admin

from campaigns.models import PromotionRequest


@admin.register(PromotionRequest)
class PromotionRequestAdmin(admin.ModelAdmin):
    """
    Admin configuration for PromotionRequest.

    Status is read-only: completion is driven by escrow release.
    """

    list_display = [
        "id",
        "title",
        "seller",
        "accepted_creator",
        "status",
        "budget_min_cents",
        "budget_max_cents",
        "created_at",
    ]
    list_filter = ["status", "created_at"]
    search_fields = ["title", "seller__email", "accepted_creator__email"]
    raw_id_fields = ["seller", "accepted_creator"]
    readonly_fields = ["id", "status", "completed_at", "created_at", "updated_at"]
