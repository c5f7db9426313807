"""
Celery configuration for the escrow service.

Celery runs the escrow background work:
- Periodic sweeps (auto-release, stuck payments, reconciliation), scheduled
  by celery-beat from the django-celery-beat database tables
- Webhook event pruning and reporting
- Party notifications queued after payment transitions

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps.

Usage:
    # Worker and beat (database scheduler)
    celery -A config worker -l info
    celery -A config beat -l info --scheduler django_celery_beat.schedulers:DatabaseScheduler

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Finds escrow.tasks, which also imports the escrow.workers sweep tasks
app.autodiscover_tasks()
