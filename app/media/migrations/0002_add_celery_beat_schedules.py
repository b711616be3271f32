"""
Add Celery Beat schedules for pipeline maintenance tasks.

This migration creates periodic task schedules for:
- Dispatching consumers for due jobs (retries whose backoff elapsed)
- Failing jobs whose worker died mid-run
- Purging completed jobs past the retention period
"""

from django.db import migrations

TASK_NAMES = [
    "Media: Dispatch Waiting Jobs",
    "Media: Release Stale Jobs",
    "Media: Purge Completed Jobs",
]


def create_periodic_tasks(apps, schema_editor):
    """Create periodic tasks for pipeline maintenance."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    CrontabSchedule = apps.get_model("django_celery_beat", "CrontabSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    # =========================================================================
    # Schedules
    # =========================================================================

    schedule_1min, _ = IntervalSchedule.objects.get_or_create(
        every=1,
        period="minutes",
    )

    schedule_5min, _ = IntervalSchedule.objects.get_or_create(
        every=5,
        period="minutes",
    )

    # Daily at 3 AM UTC
    crontab_daily_3am, _ = CrontabSchedule.objects.get_or_create(
        minute="0",
        hour="3",
        day_of_week="*",
        day_of_month="*",
        month_of_year="*",
    )

    # =========================================================================
    # Periodic Tasks
    # =========================================================================

    PeriodicTask.objects.get_or_create(
        name="Media: Dispatch Waiting Jobs",
        defaults={
            "task": "media.tasks.dispatch_waiting_jobs",
            "interval": schedule_1min,
            "enabled": True,
            "description": (
                "Kicks a consumer on every queue with due jobs. Picks up retries "
                "whose backoff elapsed and wake-ups lost by the broker."
            ),
        },
    )

    PeriodicTask.objects.get_or_create(
        name="Media: Release Stale Jobs",
        defaults={
            "task": "media.tasks.release_stale_jobs",
            "interval": schedule_5min,
            "enabled": True,
            "description": (
                "Fails active jobs that exceeded their phase timeout, handling "
                "worker crashes. Failed jobs follow the normal retry policy."
            ),
        },
    )

    PeriodicTask.objects.get_or_create(
        name="Media: Purge Completed Jobs",
        defaults={
            "task": "media.tasks.purge_completed_jobs",
            "crontab": crontab_daily_3am,
            "enabled": True,
            "description": (
                "Deletes completed jobs older than the retention period. "
                "Dead-lettered jobs are kept until handled by an operator."
            ),
        },
    )


def remove_periodic_tasks(apps, schema_editor):
    """Remove pipeline periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")
    PeriodicTask.objects.filter(name__in=TASK_NAMES).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("media", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
