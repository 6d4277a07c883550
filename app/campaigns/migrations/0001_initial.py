# Generated manually - PromotionRequest

import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="PromotionRequest",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "title",
                    models.CharField(
                        help_text="Short title of the promotion", max_length=200
                    ),
                ),
                (
                    "description",
                    models.TextField(blank=True, help_text="Brief for the creator"),
                ),
                (
                    "budget_min_cents",
                    models.PositiveBigIntegerField(
                        help_text="Lowest amount the seller will pay (minor units)"
                    ),
                ),
                (
                    "budget_max_cents",
                    models.PositiveBigIntegerField(
                        help_text="Highest amount the seller will pay (minor units)"
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("open", "Open"),
                            ("creator_interested", "Creator Interested"),
                            ("accepted", "Accepted"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="open",
                        help_text="Current lifecycle state",
                        max_length=30,
                    ),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the escrow for this request was released",
                        null=True,
                    ),
                ),
                (
                    "accepted_creator",
                    models.ForeignKey(
                        blank=True,
                        help_text="Creator selected to fulfil this request",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="accepted_promotions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "seller",
                    models.ForeignKey(
                        help_text="Seller who published this request",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="promotion_requests",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Promotion Request",
                "verbose_name_plural": "Promotion Requests",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            ("budget_max_cents__gte", models.F("budget_min_cents"))
                        ),
                        name="promotion_budget_range_valid",
                    )
                ],
            },
        ),
    ]
