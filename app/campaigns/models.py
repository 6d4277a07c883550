"""
PromotionRequest model.

A seller publishes a promotion request with a budget range. Once a
creator is accepted, the seller funds it through an escrow payment, and
the request is completed when that payment is released.

Usage:
    from campaigns.models import PromotionRequest

    promotion = PromotionRequest.objects.create(
        seller=seller,
        title="Launch video",
        budget_min_cents=1000,
        budget_max_cents=5000,
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class PromotionStatus(models.TextChoices):
    """
    Lifecycle of a promotion request.

    State Flow:
        OPEN → CREATOR_INTERESTED → ACCEPTED → COMPLETED
        any non-terminal state → CANCELLED
    """

    OPEN = "open", "Open"
    CREATOR_INTERESTED = "creator_interested", "Creator Interested"
    ACCEPTED = "accepted", "Accepted"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class PromotionRequest(UUIDPrimaryKeyMixin, BaseModel):
    """
    A seller's request for a creator to promote something.

    Fields:
        seller: User who published and pays for the request
        title: Shown to creators and on the checkout line item
        description: Free-form brief
        budget_min_cents/budget_max_cents: Accepted escrow amount range
        status: Current lifecycle state
        accepted_creator: Creator chosen by the seller
        completed_at: When the escrow for this request was released
    """

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="promotion_requests",
        help_text="Seller who published this request",
    )

    title = models.CharField(
        max_length=200,
        help_text="Short title of the promotion",
    )

    description = models.TextField(
        blank=True,
        help_text="Brief for the creator",
    )

    budget_min_cents = models.PositiveBigIntegerField(
        help_text="Lowest amount the seller will pay (minor units)",
    )

    budget_max_cents = models.PositiveBigIntegerField(
        help_text="Highest amount the seller will pay (minor units)",
    )

    status = models.CharField(
        max_length=30,
        choices=PromotionStatus.choices,
        default=PromotionStatus.OPEN,
        db_index=True,
        help_text="Current lifecycle state",
    )

    accepted_creator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="accepted_promotions",
        help_text="Creator selected to fulfil this request",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the escrow for this request was released",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Promotion Request"
        verbose_name_plural = "Promotion Requests"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(budget_max_cents__gte=models.F("budget_min_cents")),
                name="promotion_budget_range_valid",
            ),
        ]

    def __str__(self) -> str:
        return f"PromotionRequest({self.id}, {self.title!r}, {self.status})"

    def accepts_amount(self, amount_cents: int) -> bool:
        """Check whether an escrow amount falls inside the budget range."""
        return self.budget_min_cents <= amount_cents <= self.budget_max_cents

    @property
    def is_closed(self) -> bool:
        return self.status in (PromotionStatus.COMPLETED, PromotionStatus.CANCELLED)
