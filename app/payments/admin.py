"""
Payment admin configuration.

Payments, payee accounts and webhook events are read-mostly in the
admin: state only changes through the services and webhooks.
"""

from django.contrib import admin

from payments.models import PayeeAccount, Payment, WebhookEvent


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Admin configuration for Payment.

    Every field is read-only. Payments move through their states only
    via webhooks and the release service, and are never deleted.
    """

    list_display = [
        "id",
        "payer",
        "amount_cents",
        "currency",
        "status",
        "stripe_session_id",
        "stripe_transfer_id",
        "created_at",
    ]
    list_filter = ["status", "currency", "created_at"]
    search_fields = [
        "id",
        "stripe_session_id",
        "stripe_charge_id",
        "stripe_transfer_id",
        "payer__email",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "payer", "amount_cents", "currency", "status"),
            },
        ),
        (
            "Stripe",
            {
                "fields": ("stripe_session_id", "stripe_charge_id", "stripe_transfer_id"),
            },
        ),
        (
            "Release",
            {
                "fields": (
                    "platform_fee_cents",
                    "transfer_amount_cents",
                    "release_claimed_at",
                ),
            },
        ),
        (
            "Timestamps",
            {
                "fields": (
                    "created_at",
                    "updated_at",
                    "completed_at",
                    "failed_at",
                    "released_at",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Details",
            {
                "fields": ("metadata", "failure_reason"),
                "classes": ("collapse",),
            },
        ),
    )

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(PayeeAccount)
class PayeeAccountAdmin(admin.ModelAdmin):
    """
    Admin configuration for PayeeAccount.

    Provides visibility into Stripe Connect onboarding status.
    """

    list_display = [
        "id",
        "user",
        "stripe_account_id",
        "onboarding_status",
        "payouts_enabled",
        "charges_enabled",
        "created_at",
    ]
    list_filter = ["onboarding_status", "payouts_enabled", "charges_enabled"]
    search_fields = ["id", "stripe_account_id", "user__email"]
    readonly_fields = ["id", "stripe_account_id", "created_at", "updated_at"]
    ordering = ["-created_at"]


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Provides visibility into webhook processing status.
    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "stripe_event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "stripe_event_id", "event_type"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "stripe_event_id",
        "event_type",
        "payload",
        "processed_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
