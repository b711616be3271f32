"""
Celery tasks of the media pipeline.

This module provides async tasks for:
- Starting the processing of an uploaded media file
- Consuming the creation and optimization queues
- Periodic dispatch of due jobs (retries, lost wake-ups)
- Failing jobs whose worker died
- Trimming the history of completed jobs

Jobs live in the database (see media.queues). Celery messages only wake up
a consumer, which pulls one job and runs it. Every (phase, category) queue
has its own Celery queue, e.g. "creation.image", so each can be served by
dedicated workers:

    celery -A config worker -Q creation.image,creation.directb2s -c 4
    celery -A config worker -Q optimization.video -c 1

The pipeline is designed for reliability:
- At-least-once delivery (a lost wake-up is repaired by the dispatcher)
- Atomic state transitions (row locks on ProcessingJob)
- Proper error categorization (permanent vs transient)
- Observability through structured logging
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from media.models import Phase

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Grace period on top of the soft limit before a lease counts as expired
STALE_JOB_MARGIN_SECONDS = 60

PHASE_TIMEOUTS = {
    Phase.CREATION: settings.MEDIA_PIPELINE_CREATION_TIMEOUT,
    Phase.OPTIMIZATION: settings.MEDIA_PIPELINE_OPTIMIZATION_TIMEOUT,
}


def _get_pipeline():
    from media.pipeline import get_pipeline

    return get_pipeline()


# =============================================================================
# Entry Point
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(ConnectionError, TimeoutError),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def process_media_file(self, media_file_id: str, reprocess: bool = False) -> dict:
    """
    Enqueue the processing jobs of an uploaded media file.

    Args:
        media_file_id: UUID of the MediaFile.
        reprocess: Start over from the untouched upload.

    Returns:
        Dict with status and number of queued jobs.
    """
    from media.models import MediaFile

    if isinstance(media_file_id, str):
        media_file_id = UUID(media_file_id)

    try:
        media_file = MediaFile.objects.get(id=media_file_id)
    except MediaFile.DoesNotExist:
        logger.error(
            "MediaFile not found",
            extra={"media_file_id": str(media_file_id)},
        )
        return {"status": "not_found", "media_file_id": str(media_file_id)}

    service = _get_pipeline().service
    if reprocess:
        handles = service.reprocess_file(media_file)
    else:
        handles = service.process_file(media_file)

    return {
        "status": "queued",
        "media_file_id": str(media_file_id),
        "job_count": len(handles),
    }


# =============================================================================
# Queue Consumers
# =============================================================================


def kick_consumer(phase: str, category: str, countdown: float | None = None) -> None:
    """Send a wake-up message to the consumers of a queue."""
    task = process_creation_queue if phase == Phase.CREATION else process_optimization_queue
    task.apply_async(
        args=[str(category)],
        queue=f"{phase}.{category}",
        countdown=countdown,
    )


def _consume(task, phase: str, category: str) -> dict:
    pipeline = _get_pipeline()
    queue = pipeline.queues.get(phase, category)

    job = queue.pull(worker=task.request.hostname or "")
    if job is None:
        return {"status": "idle", "queue": queue.name}

    state = pipeline.worker.run(job)

    # One job per message, the next consumer run picks up the rest
    if queue.has_due():
        queue.kick()

    return {
        "status": "processed",
        "queue": queue.name,
        "job_id": job.pk,
        "state": state,
    }


@shared_task(
    bind=True,
    acks_late=True,
    soft_time_limit=PHASE_TIMEOUTS[Phase.CREATION],
    time_limit=PHASE_TIMEOUTS[Phase.CREATION] + STALE_JOB_MARGIN_SECONDS,
)
def process_creation_queue(self, category: str) -> dict:
    """Run the next due job of a creation queue."""
    return _consume(self, Phase.CREATION, category)


@shared_task(
    bind=True,
    acks_late=True,
    soft_time_limit=PHASE_TIMEOUTS[Phase.OPTIMIZATION],
    time_limit=PHASE_TIMEOUTS[Phase.OPTIMIZATION] + STALE_JOB_MARGIN_SECONDS,
)
def process_optimization_queue(self, category: str) -> dict:
    """Run the next due job of an optimization queue."""
    return _consume(self, Phase.OPTIMIZATION, category)


# =============================================================================
# Periodic Tasks
# =============================================================================


@shared_task
def dispatch_waiting_jobs() -> dict:
    """
    Periodic task waking up consumers of queues with due jobs.

    Covers retries whose backoff elapsed and wake-up messages that were
    lost (broker down at push time, worker crash before ack).

    Returns:
        Dict with count of kicked queues.
    """
    kicked_count = 0
    for queue in _get_pipeline().queues:
        if queue.has_due():
            queue.kick()
            kicked_count += 1

    if kicked_count > 0:
        logger.info(
            f"Kicked consumers of {kicked_count} queues",
            extra={"kicked_count": kicked_count},
        )

    return {"kicked_count": kicked_count}


@shared_task
def release_stale_jobs() -> dict:
    """
    Periodic task failing jobs whose worker died.

    A job active for longer than its phase timeout (plus a margin) has lost
    its worker. It is failed like any other attempt and follows the retry
    policy of its queue.

    Returns:
        Dict with count of released jobs.
    """
    released_count = 0
    for queue in _get_pipeline().queues:
        timeout = PHASE_TIMEOUTS[Phase(queue.key.phase)] + STALE_JOB_MARGIN_SECONDS
        released_count += queue.release_expired(timeout)

    if released_count > 0:
        logger.warning(
            f"Released {released_count} stale jobs",
            extra={"released_count": released_count},
        )

    return {"released_count": released_count}


@shared_task
def purge_completed_jobs() -> dict:
    """
    Periodic task deleting completed jobs past the retention period.

    Dead-lettered jobs are kept for inspection and requeueing.

    Returns:
        Dict with count of deleted jobs.
    """
    before = timezone.now() - timedelta(days=settings.MEDIA_PIPELINE_COMPLETED_RETENTION_DAYS)
    deleted_count = sum(queue.purge_completed(before) for queue in _get_pipeline().queues)

    if deleted_count > 0:
        logger.info(
            f"Purged {deleted_count} completed jobs",
            extra={"deleted_count": deleted_count},
        )

    return {"deleted_count": deleted_count}
