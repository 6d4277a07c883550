"""
URL configuration for the payments app.

Routes:
    - POST onboard - Creator payee onboarding link
    - POST create-escrow-session - Seller opens a checkout session
    - GET verify-session/<sessionId> - Checkout status polling
    - POST release-escrow/<paymentId> - Release funds to the creator
    - GET history - Requesting user's payments
    - POST webhook - Stripe webhook endpoint

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import path

from payments.views import (
    CreateEscrowSessionView,
    OnboardView,
    PaymentHistoryView,
    ReleaseEscrowView,
    VerifySessionView,
)
from payments.webhooks.views import stripe_webhook

app_name = "payments"

urlpatterns = [
    path("onboard", OnboardView.as_view(), name="onboard"),
    path(
        "create-escrow-session",
        CreateEscrowSessionView.as_view(),
        name="create-escrow-session",
    ),
    path(
        "verify-session/<str:session_id>",
        VerifySessionView.as_view(),
        name="verify-session",
    ),
    path(
        "release-escrow/<uuid:payment_id>",
        ReleaseEscrowView.as_view(),
        name="release-escrow",
    ),
    path("history", PaymentHistoryView.as_view(), name="history"),
    # Webhook endpoints
    path("webhook", stripe_webhook, name="stripe-webhook"),
]
