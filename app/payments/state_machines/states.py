"""
State enums for payment models.

This module defines the state enums used by payment models with django-fsm.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Payment States:
    pending → completed → released
    pending → failed

    Transitions only move forward. A payment that reached completed
    can never return to pending or become failed, and released is
    reachable from completed only.
"""

from django.db import models


class PaymentStatus(models.TextChoices):
    """
    States for the escrow Payment lifecycle.

    Terminal states: FAILED, RELEASED

    State Flow:
        PENDING → COMPLETED   (gateway confirmed the checkout was paid)
        PENDING → FAILED      (gateway reported a failed or expired checkout)
        COMPLETED → RELEASED  (net amount transferred to the payee)
    """

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    RELEASED = "released", "Released"


class OnboardingStatus(models.TextChoices):
    """
    Stripe Connect onboarding status for PayeeAccount.

    Reflects the state of the creator's Stripe Connect onboarding process.
    Only COMPLETE status allows receiving transfers.
    """

    NOT_STARTED = "not_started", "Not Started"
    IN_PROGRESS = "in_progress", "In Progress"
    COMPLETE = "complete", "Complete"
    REJECTED = "rejected", "Rejected"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (gateway redelivers)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


__all__ = [
    "PaymentStatus",
    "OnboardingStatus",
    "WebhookEventStatus",
]
