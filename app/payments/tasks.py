"""
Celery tasks for escrow payments.

This module provides periodic tasks for:
- Reconciling escrow checkout sessions and releases with Stripe
- Reprocessing webhook events whose processing failed

Usage:
    from payments.tasks import reconcile_escrow_sessions

    # Run reconciliation now instead of waiting for celery-beat
    reconcile_escrow_sessions.delay()
"""

from __future__ import annotations

import logging

from celery import shared_task

from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_WEBHOOK_RETRIES = 5
WEBHOOK_RETRY_BATCH_SIZE = 100


# =============================================================================
# Reconciliation Tasks
# =============================================================================


@shared_task(
    autoretry_for=(ConnectionError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def reconcile_escrow_sessions(lookback_hours: int | None = None) -> dict:
    """
    Periodic task that heals escrow state from Stripe.

    Scheduled every 15 minutes by celery-beat (see migration
    0002_add_reconciliation_schedule).

    Args:
        lookback_hours: How far back to list checkout sessions

    Returns:
        Dict with the counts of the sweep
    """
    from payments.services import ReconciliationService

    result = ReconciliationService.run_reconciliation(lookback_hours=lookback_hours)

    if not result.success:
        logger.error(
            "Escrow reconciliation failed",
            extra={"error": result.error, "error_code": result.error_code},
        )
        return {"status": "failed", "error_code": result.error_code}

    run = result.data
    return {
        "status": "completed",
        "sessions_checked": run.sessions_checked,
        "payments_backfilled": run.payments_backfilled,
        "payments_completed": run.payments_completed,
        "payments_failed": run.payments_failed,
        "releases_finalized": run.releases_finalized,
        "claims_cleared": run.claims_cleared,
        "errors": len(run.errors),
    }


# =============================================================================
# Webhook Tasks
# =============================================================================


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to reprocess failed webhook events.

    Stripe redelivers events answered with 500 on its own schedule; this
    task also picks up events that failed in a handler. Reprocessing goes
    through the same conditional transitions, so an event that was in
    fact applied becomes a no-op.

    Returns:
        Dict with counts of reprocessed and still failing events
    """
    from payments.webhooks.handlers import process_webhook_event

    failed_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=MAX_WEBHOOK_RETRIES,
    ).order_by("created_at")[:WEBHOOK_RETRY_BATCH_SIZE]

    processed_count = 0
    failed_count = 0
    for webhook_event in failed_webhooks:
        result = process_webhook_event(webhook_event)
        if result.success:
            processed_count += 1
        else:
            failed_count += 1
            logger.warning(
                "Webhook still failing after retry",
                extra={
                    "stripe_event_id": webhook_event.stripe_event_id,
                    "retry_count": webhook_event.retry_count,
                    "error_code": result.error_code,
                },
            )

    if processed_count or failed_count:
        logger.info(
            f"Retried {processed_count + failed_count} failed webhooks",
            extra={"processed_count": processed_count, "failed_count": failed_count},
        )

    return {"processed_count": processed_count, "failed_count": failed_count}
