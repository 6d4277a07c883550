"""
Webhook endpoint view for Stripe.

The view:
1. Verifies the webhook signature before touching the database
2. Creates/retrieves the WebhookEvent record (idempotent)
3. Applies the event synchronously
4. Answers 200 when the event is applied or acknowledged, 500 when it
   could not be persisted so Stripe redelivers it

Usage:
    # In urls.py
    from payments.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhook", stripe_webhook, name="stripe-webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.db import DatabaseError
from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.adapters import StripeAdapter
from payments.exceptions import WebhookSignatureError
from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus
from payments.webhooks.handlers import process_webhook_event


logger = logging.getLogger(__name__)


def _error(message: str, error_code: str, status: int) -> JsonResponse:
    return JsonResponse({"error": message, "error_code": error_code}, status=status)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive and apply Stripe webhook events.

    Security:
    - Signature verification prevents spoofed webhooks
    - Nothing is read from or written to the database before it passes
    - CSRF exemption required for external webhooks
    - Only POST requests accepted

    Idempotency:
    - WebhookEvent.stripe_event_id is unique
    - Already processed events return 200 without reprocessing
    - Events that failed earlier are processed again; every payment
      transition is conditional, so reprocessing never double-applies

    Returns:
        JsonResponse with status:
        - 200: Event applied, already processed, or ignored
        - 400: Missing or invalid signature, malformed payload
        - 500: Event could not be persisted

    Example Stripe-Signature header:
        t=1614556800,v1=xxx,v0=yyy
    """
    payload = request.body
    signature = request.headers.get("Stripe-Signature", "")

    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return _error("Missing signature", "INVALID_SIGNATURE", 400)

    # Step 1: Verify signature
    try:
        event_data = StripeAdapter.verify_webhook_signature(payload, signature)
    except WebhookSignatureError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": e.message, "error_code": e.error_code},
        )
        return _error(e.message, e.error_code, 400)

    stripe_event_id = event_data.get("id")
    event_type = event_data.get("type")

    if not stripe_event_id or not event_type:
        logger.warning("Webhook missing required fields")
        return _error("Invalid event", "INVALID_PAYLOAD", 400)

    log_context = {"stripe_event_id": stripe_event_id, "event_type": event_type}
    logger.info(f"Received Stripe webhook: {event_type}", extra=log_context)

    # Step 2: Create/get WebhookEvent (idempotent)
    try:
        webhook_event, created = WebhookEvent.objects.get_or_create(
            stripe_event_id=stripe_event_id,
            defaults={
                "event_type": event_type,
                "payload": event_data,
                "status": WebhookEventStatus.PENDING,
            },
        )
    except DatabaseError:
        logger.error(
            "Failed to store webhook event",
            extra=log_context,
            exc_info=True,
        )
        return _error("Event could not be stored", "PERSISTENCE_ERROR", 500)

    # Step 3: If already processed, return success
    if not created and webhook_event.is_processed:
        logger.info(
            "Webhook already processed, returning success",
            extra=log_context,
        )
        return JsonResponse({"received": True})

    # Step 4: Apply
    result = process_webhook_event(webhook_event)

    if not result.success and result.error_code == "PERSISTENCE_ERROR":
        return _error(result.error, result.error_code, 500)

    return JsonResponse({"received": True})
