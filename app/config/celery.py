"""
Celery configuration for the escrow payments service.

Celery runs the background side of escrow payments:
- Periodic reconciliation of checkout sessions and releases with Stripe
- Reprocessing of webhook events whose handler failed

Schedules live in the database (django-celery-beat) and are registered by
a data migration in the payments app. Redis is both broker and result
backend.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Picks up payments.tasks
app.autodiscover_tasks()
