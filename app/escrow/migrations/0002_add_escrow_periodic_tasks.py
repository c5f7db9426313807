"""
Add celery-beat schedules for the escrow sweeps and maintenance tasks.

The auto-release sweep is registered twice (every minute, plus a backup
every 5 minutes) so a missed tick never delays a release by more than a
few minutes. Both entries run the same task; the ledger's guarded
transitions make overlapping runs safe.
"""

from django.db import migrations

PERIODIC_TASKS = [
    {
        "name": "Escrow Auto-Release Sweep",
        "task": "escrow.workers.auto_release.process_auto_releases",
        "every": 1,
        "period": "minutes",
        "description": "Releases held payments whose auto-release deadline has passed.",
    },
    {
        "name": "Escrow Auto-Release Sweep (backup)",
        "task": "escrow.workers.auto_release.process_auto_releases",
        "every": 5,
        "period": "minutes",
        "description": "Backup cadence for the auto-release sweep.",
    },
    {
        "name": "Escrow Stuck Payment Sweep",
        "task": "escrow.workers.stuck_payments.cancel_stuck_payments",
        "every": 1,
        "period": "hours",
        "description": "Cancels pending payments the payer never funded.",
    },
    {
        "name": "Escrow Pending Payment Reconciliation",
        "task": "escrow.workers.reconciliation.reconcile_pending_payments",
        "every": 15,
        "period": "minutes",
        "description": "Checks old pending payments against their Stripe PaymentIntent.",
    },
    {
        "name": "Escrow Webhook Event Cleanup",
        "task": "escrow.tasks.cleanup_processed_webhooks",
        "every": 1,
        "period": "days",
        "description": "Deletes completed webhook events past the retention window.",
    },
    {
        "name": "Escrow Stuck Webhook Report",
        "task": "escrow.tasks.report_stuck_webhook_events",
        "every": 30,
        "period": "minutes",
        "description": "Logs webhook events stuck in processing for operator attention.",
    },
    {
        "name": "Escrow Weekly Payment Report",
        "task": "escrow.tasks.report_weekly_payment_summary",
        "every": 7,
        "period": "days",
        "description": "Logs per-status payment counts and totals for the last week.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for the escrow sweeps."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for entry in PERIODIC_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=entry["every"],
            period=entry["period"],
        )
        PeriodicTask.objects.get_or_create(
            name=entry["name"],
            defaults={
                "task": entry["task"],
                "interval": schedule,
                "enabled": True,
                "description": entry["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[entry["name"] for entry in PERIODIC_TASKS],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("escrow", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
