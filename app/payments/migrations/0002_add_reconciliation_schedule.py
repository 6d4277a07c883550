"""
Add celery-beat schedules for escrow reconciliation and webhook retries.

reconcile_escrow_sessions runs every 15 minutes to backfill checkout
sessions missing locally, settle stale pending payments and finish
release attempts that stopped midway. retry_failed_webhooks runs every
5 minutes to reprocess webhook events whose handler failed.
"""

from django.db import migrations

PERIODIC_TASKS = [
    {
        "name": "Reconcile Escrow Sessions",
        "task": "payments.tasks.reconcile_escrow_sessions",
        "every": 15,
        "description": (
            "Backfills Payment rows for checkout sessions created at Stripe "
            "but never recorded, and resolves stale pending payments and "
            "interrupted releases."
        ),
    },
    {
        "name": "Retry Failed Webhooks",
        "task": "payments.tasks.retry_failed_webhooks",
        "every": 5,
        "description": "Reprocesses webhook events whose handler failed.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for periodic in PERIODIC_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=periodic["every"],
            period="minutes",
        )
        PeriodicTask.objects.get_or_create(
            name=periodic["name"],
            defaults={
                "task": periodic["task"],
                "interval": schedule,
                "enabled": True,
                "description": periodic["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name__in=[t["name"] for t in PERIODIC_TASKS]).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
