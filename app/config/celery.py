"""
Celery configuration for the media pipeline.

Every (phase, category) job queue of the pipeline has a Celery queue of the
same name ("creation.image", "optimization.video", ...). Consumer tasks are
routed to those queues at call time, so a worker can be dedicated to a subset
of them:

    celery -A config worker -Q creation.image,creation.video -c 4
    celery -A config worker -Q optimization.video -c 1
    celery -A config worker -Q celery        # maintenance tasks
    celery -A config beat

Job state itself lives in the database (see media.models.ProcessingJob); the
broker only carries wake-up messages for consumers.

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

# Celery will look for a tasks.py module in each installed app
app.autodiscover_tasks()
