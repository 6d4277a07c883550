"""
Webhook event handlers for Stripe events.

This module provides a handler registry and implementations for
applying Stripe webhook events to escrow payments and payee accounts.

Every payment transition is conditional on the prior status: the
django-fsm transition checks it in memory, and ConcurrentTransitionMixin
repeats the check in the UPDATE's WHERE clause. A redelivered or
out-of-order event therefore finds the payment already past PENDING and
becomes a logged no-op.

Usage:
    from payments.webhooks.handlers import process_webhook_event, register_handler

    # Register a custom handler
    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    # Process a stored event
    result = process_webhook_event(webhook_event)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from django.db import DatabaseError, transaction
from django_fsm import ConcurrentTransition, TransitionNotAllowed

from core.services import ServiceResult

from payments.models import PayeeAccount, Payment, WebhookEvent
from payments.state_machines import OnboardingStatus, PaymentStatus, WebhookEventStatus

if TYPE_CHECKING:
    from typing import Any


logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(*event_types: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler("checkout.session.expired", "checkout.session.async_payment_failed")
        def handle_session_failed(webhook_event: WebhookEvent) -> ServiceResult:
            ...

    Args:
        event_types: One or more Stripe event types

    Returns:
        Decorator function that registers the handler
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        for event_type in event_types:
            WEBHOOK_HANDLERS[event_type] = func
            logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to the appropriate handler.

    Unhandled event types are acknowledged with success so Stripe stops
    redelivering them.

    Args:
        webhook_event: The WebhookEvent to process

    Returns:
        ServiceResult from the handler, or success if no handler
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )

    return handler(webhook_event)


def process_webhook_event(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Run a stored event through its handler and record the outcome.

    Database errors are not swallowed into a success: the event is marked
    FAILED (when the store still accepts writes) and a PERSISTENCE_ERROR
    result is returned so the endpoint answers 500 and Stripe redelivers.

    Args:
        webhook_event: Stored, signature-verified event

    Returns:
        ServiceResult from the handler, or a PERSISTENCE_ERROR failure
    """
    log_context = {
        "stripe_event_id": webhook_event.stripe_event_id,
        "event_type": webhook_event.event_type,
    }

    try:
        webhook_event.mark_processing()
        webhook_event.save(update_fields=["status", "retry_count", "updated_at"])

        with transaction.atomic():
            result = dispatch_webhook(webhook_event)

        if result.success:
            webhook_event.mark_processed()
        else:
            webhook_event.mark_failed(result.error or "Handler returned failure")
        webhook_event.save(
            update_fields=["status", "processed_at", "error_message", "updated_at"]
        )
    except DatabaseError as e:
        logger.error(
            "Database error while processing webhook",
            extra={**log_context, "reconciliation_needed": True},
            exc_info=True,
        )
        _record_failure(webhook_event, str(e))
        return ServiceResult.failure(
            "Webhook could not be persisted",
            error_code="PERSISTENCE_ERROR",
            retryable=True,
        )

    if not result.success:
        logger.error(
            "Webhook handler returned failure",
            extra={**log_context, "error": result.error, "error_code": result.error_code},
        )
    return result


def _record_failure(webhook_event: WebhookEvent, error_message: str) -> None:
    try:
        WebhookEvent.objects.filter(id=webhook_event.id).update(
            status=WebhookEventStatus.FAILED,
            error_message=error_message,
        )
    except DatabaseError:
        logger.error(
            "Could not mark webhook event as failed",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
            exc_info=True,
        )


# =============================================================================
# Helpers
# =============================================================================


def _event_object(webhook_event: WebhookEvent) -> dict[str, Any]:
    return webhook_event.payload.get("data", {}).get("object", {}) or {}


def _apply_payment_transition(
    payment: Payment,
    transition: str,
    webhook_event: WebhookEvent,
    **kwargs: Any,
) -> ServiceResult:
    """
    Apply a PENDING-only transition, treating a moved payment as done.

    Args:
        payment: Payment loaded for this event
        transition: Name of the FSM transition method ("complete", "fail")
        webhook_event: Event being applied, for logging

    Returns:
        ServiceResult success whether the transition ran or was a no-op
    """
    log_context = {
        "payment_id": str(payment.id),
        "stripe_session_id": payment.stripe_session_id,
        "stripe_event_id": webhook_event.stripe_event_id,
        "transition": transition,
    }

    if payment.status != PaymentStatus.PENDING:
        logger.info(
            "Payment no longer pending, event already applied or superseded",
            extra={**log_context, "current_status": payment.status},
        )
        return ServiceResult.success(payment)

    try:
        getattr(payment, transition)(**kwargs)
        payment.save()
    except (ConcurrentTransition, TransitionNotAllowed):
        logger.info(
            "Payment moved concurrently, event already applied or superseded",
            extra=log_context,
        )
        return ServiceResult.success(payment)

    logger.info(
        "Payment transitioned",
        extra={**log_context, "new_status": payment.status},
    )
    return ServiceResult.success(payment)


def _find_payment_for_session(
    webhook_event: WebhookEvent,
    session_id: str | None,
) -> Payment | None:
    if not session_id:
        return None
    payment = Payment.objects.filter(stripe_session_id=session_id).first()
    if payment is None:
        logger.warning(
            "No payment for checkout session, leaving it to reconciliation",
            extra={
                "stripe_session_id": session_id,
                "stripe_event_id": webhook_event.stripe_event_id,
                "reconciliation_needed": True,
            },
        )
    return payment


# =============================================================================
# Checkout Session Handlers
# =============================================================================


@register_handler(
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
)
def handle_checkout_session_completed(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Handle a checkout session that collected the payment.

    Sessions paid with delayed methods arrive here with
    payment_status "unpaid" first. They are acknowledged without a
    transition; async_payment_succeeded completes them later.

    Args:
        webhook_event: The WebhookEvent containing the event data

    Returns:
        ServiceResult with success/failure status
    """
    session = _event_object(webhook_event)
    session_id = webhook_event.get_object_id()

    if not session_id:
        logger.error(
            f"{webhook_event.event_type}: Could not extract session id",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.failure(
            "Could not extract session id from webhook",
            error_code="INVALID_WEBHOOK_PAYLOAD",
        )

    if session.get("payment_status") != "paid":
        logger.info(
            "Checkout session completed without payment yet",
            extra={
                "stripe_session_id": session_id,
                "stripe_event_id": webhook_event.stripe_event_id,
                "payment_status": session.get("payment_status"),
            },
        )
        return ServiceResult.success(None)

    payment = _find_payment_for_session(webhook_event, session_id)
    if payment is None:
        return ServiceResult.success(None)

    return _apply_payment_transition(
        payment,
        "complete",
        webhook_event,
        charge_id=session.get("payment_intent"),
    )


@register_handler(
    "checkout.session.async_payment_failed",
    "checkout.session.expired",
)
def handle_checkout_session_failed(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Handle a checkout session that will never collect the payment.
    """
    payment = _find_payment_for_session(webhook_event, webhook_event.get_object_id())
    if payment is None:
        return ServiceResult.success(None)

    if webhook_event.event_type == "checkout.session.expired":
        reason = "Checkout session expired"
    else:
        reason = "Asynchronous payment failed"

    return _apply_payment_transition(payment, "fail", webhook_event, reason=reason)


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler("payment_intent.payment_failed")
def handle_payment_intent_failed(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Log a declined charge attempt on an escrow checkout.

    Checkout keeps the session open after a decline and the payer may
    retry with another method, so the payment stays PENDING. Only
    checkout.session.expired and async_payment_failed fail it.

    The PaymentIntent carries the payment id as transfer_group and in
    its metadata, since the charge id is only stored on completion.
    """
    intent = _event_object(webhook_event)
    payment_id = (intent.get("metadata") or {}).get("payment_id") or intent.get(
        "transfer_group"
    )
    last_error = intent.get("last_payment_error") or {}

    logger.info(
        "Charge attempt declined, payment left pending",
        extra={
            "payment_id": payment_id,
            "payment_intent_id": intent.get("id"),
            "stripe_event_id": webhook_event.stripe_event_id,
            "decline_code": last_error.get("decline_code") or last_error.get("code"),
            "reason": last_error.get("message"),
        },
    )
    return ServiceResult.success(None)


# =============================================================================
# Connect Account Handlers
# =============================================================================


@register_handler("account.updated")
def handle_account_updated(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Handle payee account updates from Stripe.

    Only the onboarding flags of the PayeeAccount change. No payment is
    touched.

    Args:
        webhook_event: The WebhookEvent containing the event data

    Returns:
        ServiceResult with success/failure status
    """
    data_object = _event_object(webhook_event)
    account_id = webhook_event.get_object_id()

    if not account_id:
        logger.error(
            "account.updated: Could not extract account_id",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.failure(
            "Could not extract account_id from webhook",
            error_code="INVALID_WEBHOOK_PAYLOAD",
        )

    payee_account = PayeeAccount.objects.filter(stripe_account_id=account_id).first()
    if not payee_account:
        logger.info(
            "PayeeAccount not found, may be external account",
            extra={
                "account_id": account_id,
                "stripe_event_id": webhook_event.stripe_event_id,
            },
        )
        return ServiceResult.success(None)

    requirements = data_object.get("requirements") or {}
    requirements_due = (requirements.get("currently_due") or []) + (
        requirements.get("past_due") or []
    )
    disabled_reason = requirements.get("disabled_reason") or ""

    payee_account.payouts_enabled = bool(data_object.get("payouts_enabled", False))
    payee_account.charges_enabled = bool(data_object.get("charges_enabled", False))
    payee_account.details_submitted = bool(data_object.get("details_submitted", False))

    if disabled_reason.startswith("rejected"):
        payee_account.onboarding_status = OnboardingStatus.REJECTED
    elif payee_account.details_submitted and not requirements_due:
        payee_account.onboarding_status = OnboardingStatus.COMPLETE
    else:
        payee_account.onboarding_status = OnboardingStatus.IN_PROGRESS

    payee_account.save(
        update_fields=[
            "payouts_enabled",
            "charges_enabled",
            "details_submitted",
            "onboarding_status",
            "updated_at",
        ]
    )

    logger.info(
        "PayeeAccount updated",
        extra={
            "payee_account_id": str(payee_account.id),
            "account_id": account_id,
            "onboarding_status": payee_account.onboarding_status,
            "payouts_enabled": payee_account.payouts_enabled,
            "requirements_due": len(requirements_due),
        },
    )
    return ServiceResult.success(payee_account)
