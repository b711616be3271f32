"""
Job queue service of the media pipeline.

There is one JobQueue per (phase, category) pair. Jobs are stored as
ProcessingJob rows, so a queue survives restarts of every process involved;
Celery only carries wake-up messages telling a consumer that a queue has
work (see media.tasks).

Ordering:
    Within a queue, the job with the lowest priority value is pulled first.
    Jobs with equal priority are pulled in enqueue order. No ordering is
    guaranteed across queues.

Delivery:
    At least once. A job is leased to one worker at a time through row
    locking; a job whose worker dies is failed by release_expired() and
    follows the retry policy like any other failure.

Retries:
    A failed attempt puts the job back in line after an exponential backoff
    delay. After max_retries retries the job is dead-lettered exactly once;
    failing a finished job is a no-op.

Usage:
    queues = build_queues()
    queue = queues.get(Phase.CREATION, MimeCategory.IMAGE)
    handle = queue.push(file_id=..., processor="image.variation", ...)

    job = queue.pull(worker="worker-1")
    try:
        ...
    except Exception as e:
        queue.fail(job, str(e))
    else:
        queue.ack(job)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Callable, TypeVar

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone
from kombu.exceptions import OperationalError as BrokerError

from core.exceptions import ConfigurationError
from media.categories import MimeCategory
from media.exceptions import DestinationBusy, QueueUnavailable
from media.models import JobState, Phase, ProcessingJob
from media.signals import job_dead_lettered, job_failed, notify

if TYPE_CHECKING:
    from collections.abc import Iterator
    from datetime import datetime
    from uuid import UUID

T = TypeVar("T")

logger = logging.getLogger(__name__)


def poll(attempt: Callable[[], T | None], timeout: float | None, interval: float) -> T | None:
    """
    Call attempt until it returns a truthy value or timeout seconds passed.

    Args:
        attempt: Returns the awaited value, or a falsy value to retry.
        timeout: Seconds to wait, None to wait forever.
        interval: Sleep between attempts.

    Returns:
        The first truthy value, or None on timeout.
    """
    deadline = time.monotonic() + timeout if timeout is not None else None
    while True:
        value = attempt()
        if value:
            return value
        if deadline is not None and time.monotonic() >= deadline:
            return None
        time.sleep(interval)


# =============================================================================
# Value Types
# =============================================================================


@dataclass(frozen=True)
class QueueKey:
    """Identity of a queue. Also names the Celery queue of its consumers."""

    phase: str
    category: str

    @property
    def name(self) -> str:
        return f"{self.phase}.{self.category}"

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class JobHandle:
    """Reference to an enqueued job, returned by push()."""

    id: int
    queue: str

    def __str__(self) -> str:
        return f"{self.queue}#{self.id}"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retries with exponential backoff.

    Attributes:
        max_retries: Retries after the first failed attempt.
        backoff_seconds: Delay before the first retry.
        backoff_max_seconds: Upper bound of any delay.
    """

    max_retries: int = 3
    backoff_seconds: float = 10
    backoff_max_seconds: float = 300

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        policy = cls(
            max_retries=settings.MEDIA_PIPELINE_MAX_RETRIES,
            backoff_seconds=settings.MEDIA_PIPELINE_BACKOFF_SECONDS,
            backoff_max_seconds=settings.MEDIA_PIPELINE_BACKOFF_MAX_SECONDS,
        )
        policy.validate()
        return policy

    def delay(self, attempt: int) -> float:
        """Delay in seconds before retrying after the given failed attempt."""
        return min(self.backoff_seconds * 2 ** (attempt - 1), self.backoff_max_seconds)

    def delays(self) -> list[float]:
        return [self.delay(attempt) for attempt in range(1, self.max_retries + 1)]

    def validate(self) -> None:
        """
        Reject configurations where the cap flattens the backoff.

        Raises:
            ImproperlyConfigured: If a delay is not strictly larger than the
                one before it, or the base delay is not positive.
        """
        if self.backoff_seconds <= 0:
            raise ImproperlyConfigured("MEDIA_PIPELINE_BACKOFF_SECONDS must be positive.")
        delays = self.delays()
        if any(later <= earlier for earlier, later in zip(delays, delays[1:])):
            raise ImproperlyConfigured(
                f"MEDIA_PIPELINE_BACKOFF_MAX_SECONDS={self.backoff_max_seconds} caps the "
                f"backoff before the last retry (delays: {delays}). Raise the cap or "
                f"lower MEDIA_PIPELINE_MAX_RETRIES."
            )


def celery_kicker(queue: "JobQueue", countdown: float | None = None) -> None:
    """Wake up a Celery consumer for a queue."""
    from media.tasks import kick_consumer

    kick_consumer(queue.key.phase, queue.key.category, countdown=countdown)


# =============================================================================
# Queue
# =============================================================================


class JobQueue:
    """
    A durable, priority-ordered job queue for one (phase, category) pair.

    Args:
        key: Phase and category served by the queue.
        policy: Retry policy applied by fail().
        concurrency: Maximum number of jobs active at once, None for no limit.
        poll_interval: Sleep between attempts of a blocking pull.
        kicker: Callable waking up a consumer after jobs become due.
    """

    def __init__(
        self,
        key: QueueKey,
        policy: RetryPolicy | None = None,
        concurrency: int | None = 1,
        poll_interval: float = 1.0,
        kicker: Callable[["JobQueue", float | None], None] | None = celery_kicker,
    ):
        self.key = key
        self.policy = policy or RetryPolicy()
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.kicker = kicker

    def __repr__(self) -> str:
        return f"JobQueue({self.name!r}, concurrency={self.concurrency})"

    @property
    def name(self) -> str:
        return self.key.name

    def jobs(self):
        """All jobs of this queue, in any state."""
        return ProcessingJob.objects.for_queue(self.key.phase, self.key.category)

    # =========================================================================
    # Producer Side
    # =========================================================================

    def push(
        self,
        *,
        file_id: "UUID",
        processor: str,
        src_path: str,
        dest_path: str,
        src_variation: str | None = None,
        dest_variation: str | None = None,
        priority: int = 0,
    ) -> JobHandle:
        """
        Persist a job and wake up a consumer once the transaction commits.

        Returns:
            Handle of the stored job.

        Raises:
            DestinationBusy: A waiting or active creation job already
                writes to dest_path.
            QueueUnavailable: The job could not be stored.
        """
        try:
            with transaction.atomic():
                job = ProcessingJob.objects.create(
                    phase=self.key.phase,
                    category=self.key.category,
                    file_id=file_id,
                    processor=processor,
                    src_path=src_path,
                    dest_path=dest_path,
                    src_variation=src_variation or "",
                    dest_variation=dest_variation or "",
                    priority=priority,
                    max_retries=self.policy.max_retries,
                )
        except IntegrityError as e:
            raise DestinationBusy(
                f"A creation job for {dest_path} is already waiting or running",
                details={"queue": self.name, "dest_path": dest_path},
            ) from e
        except DatabaseError as e:
            logger.error(
                "Could not persist job",
                extra={"queue": self.name, "file_id": str(file_id), "error": str(e)},
            )
            raise QueueUnavailable(
                f"Job store unavailable, could not push to {self.name}",
                details={"queue": self.name, "file_id": str(file_id)},
            ) from e

        transaction.on_commit(self.kick)
        logger.debug(
            "Job pushed",
            extra={
                "queue": self.name,
                "job_id": job.pk,
                "file_id": str(file_id),
                "processor": processor,
                "priority": priority,
            },
        )
        return JobHandle(id=job.pk, queue=self.name)

    def kick(self, countdown: float | None = None) -> None:
        """
        Ask for a consumer run on this queue.

        Broker errors are logged only: the job is already stored, and the
        periodic dispatcher picks it up once the broker is back.
        """
        if self.kicker is None:
            return
        try:
            self.kicker(self, countdown)
        except BrokerError as e:
            logger.warning(
                "Could not wake up consumer, relying on periodic dispatch",
                extra={"queue": self.name, "error": str(e)},
            )

    # =========================================================================
    # Consumer Side
    # =========================================================================

    def pull(
        self,
        worker: str = "",
        block: bool = False,
        timeout: float | None = None,
    ) -> ProcessingJob | None:
        """
        Lease the next due job to a worker.

        Args:
            worker: Identifier recorded on the job.
            block: Wait until a job is available.
            timeout: Give up a blocking pull after this many seconds,
                None to wait forever.

        Returns:
            The leased job (state ACTIVE), or None.
        """
        if not block:
            return self._lease_next(worker)
        return poll(lambda: self._lease_next(worker), timeout, self.poll_interval)

    def _lease_next(self, worker: str) -> ProcessingJob | None:
        with transaction.atomic():
            if self.concurrency and self.jobs().active().count() >= self.concurrency:
                return None
            job = (
                self.jobs()
                .due()
                .in_dequeue_order()
                .select_for_update(skip_locked=True)
                .first()
            )
            if job is None:
                return None
            job.start(worker=worker)
            job.save()

        logger.debug(
            "Job leased",
            extra={
                "queue": self.name,
                "job_id": job.pk,
                "attempt": job.attempts,
                "worker": worker,
            },
        )
        return job

    def ack(self, job: ProcessingJob) -> bool:
        """
        Mark a leased job as completed.

        Returns:
            False if the lease was lost in the meantime (the job was failed
            by the stale job sweep), True otherwise.
        """
        with transaction.atomic():
            current = self._lock(job)
            if not self._holds_lease(current, job):
                return False
            current.complete()
            current.save()
        job.refresh_from_db()
        logger.debug(
            "Job completed",
            extra={"queue": self.name, "job_id": job.pk, "attempt": job.attempts},
        )
        return True

    def fail(self, job: ProcessingJob, reason: str, permanent: bool = False) -> str:
        """
        Record a failed attempt of a leased job.

        The job is put back in line with a backoff delay while retries are
        left and the failure is not permanent. Otherwise it is dead-lettered.
        Failing a completed or dead-lettered job changes nothing.

        Args:
            job: The leased job.
            reason: Error description, stored with the attempt.
            permanent: Skip remaining retries.

        Returns:
            The resulting job state.
        """
        delay = None
        with transaction.atomic():
            current = self._lock(job)
            if current.is_terminal:
                logger.info(
                    "Ignoring failure of finished job",
                    extra={"queue": self.name, "job_id": job.pk, "state": current.state},
                )
                job.refresh_from_db()
                return current.state
            if not self._holds_lease(current, job):
                job.refresh_from_db()
                return current.state

            if not permanent and current.attempts <= current.max_retries:
                delay = self.policy.delay(current.attempts)
                current.retry(reason, delay)
            else:
                current.dead_letter(reason)
            current.save()
        job.refresh_from_db()

        if delay is not None:
            logger.warning(
                "Job failed, retrying",
                extra={
                    "queue": self.name,
                    "job_id": job.pk,
                    "attempt": job.attempts,
                    "delay": delay,
                    "error": reason,
                },
            )
            transaction.on_commit(lambda: self.kick(countdown=delay))
            self._notify(job_failed, job=job, error=reason, delay=delay)
        else:
            logger.error(
                "Job dead-lettered",
                extra={
                    "queue": self.name,
                    "job_id": job.pk,
                    "file_id": str(job.file_id),
                    "processor": job.processor,
                    "attempts": job.attempts,
                    "permanent": permanent,
                    "error": reason,
                },
            )
            self._notify(job_dead_lettered, job=job, error=reason)
        return job.state

    def _lock(self, job: ProcessingJob) -> ProcessingJob:
        return ProcessingJob.objects.select_for_update().get(pk=job.pk)

    def _holds_lease(self, current: ProcessingJob, job: ProcessingJob) -> bool:
        if current.state == JobState.ACTIVE and current.attempts == job.attempts:
            return True
        logger.warning(
            "Lease lost, result of attempt discarded",
            extra={
                "queue": self.name,
                "job_id": job.pk,
                "attempt": job.attempts,
                "state": current.state,
            },
        )
        return False

    def _notify(self, signal, **kwargs) -> None:
        notify(signal, sender=self.__class__, queue=self.name, **kwargs)

    # =========================================================================
    # Administration
    # =========================================================================

    def drain(self) -> int:
        """Remove every waiting job. Active jobs run to completion."""
        count, _ = self.jobs().waiting().delete()
        if count:
            logger.info("Queue drained", extra={"queue": self.name, "removed": count})
        return count

    def remove(self, handle: JobHandle) -> bool:
        """Remove a job that has not started yet."""
        count, _ = self.jobs().waiting().filter(pk=handle.id).delete()
        return count > 0

    def remove_for_file(self, file_id: "UUID") -> int:
        """Remove the waiting jobs of a file."""
        count, _ = self.jobs().waiting().for_file(file_id).delete()
        if count:
            logger.info(
                "Removed waiting jobs of file",
                extra={"queue": self.name, "file_id": str(file_id), "removed": count},
            )
        return count

    def requeue(self, job: ProcessingJob) -> JobHandle:
        """
        Put a dead-lettered job back in line with a fresh retry budget.

        Raises:
            DestinationBusy: Another creation job now owns the destination.
        """
        try:
            with transaction.atomic():
                current = self._lock(job)
                current.requeue()
                current.save()
        except IntegrityError as e:
            raise DestinationBusy(
                f"A creation job for {job.dest_path} is already waiting or running",
                details={"queue": self.name, "dest_path": job.dest_path},
            ) from e
        job.refresh_from_db()
        transaction.on_commit(self.kick)
        logger.info("Job requeued", extra={"queue": self.name, "job_id": job.pk})
        return JobHandle(id=job.pk, queue=self.name)

    def release_expired(self, timeout: float, now: "datetime | None" = None) -> int:
        """
        Fail active jobs leased longer than timeout seconds ago.

        Returns:
            Number of jobs failed.
        """
        cutoff = (now or timezone.now()) - timedelta(seconds=timeout)
        expired = list(self.jobs().active().filter(started_at__lt=cutoff))
        for job in expired:
            self.fail(job, f"Lease expired after {timeout:g}s, worker presumed dead")
        return len(expired)

    def purge_completed(self, before: "datetime") -> int:
        """Delete completed jobs finished before the given time."""
        count, _ = (
            self.jobs()
            .filter(state=JobState.COMPLETED, finished_at__lt=before)
            .delete()
        )
        return count

    def has_due(self) -> bool:
        return self.jobs().due().exists()

    def counts(self) -> dict[str, int]:
        """Number of jobs per state."""
        return self.jobs().state_counts()

    def remaining_for(self, file_id: "UUID", dest_variation: str | None = None) -> int:
        """Number of waiting or active jobs of a file (and variation)."""
        jobs = self.jobs().live().for_file(file_id)
        if dest_variation is not None:
            jobs = jobs.filter(dest_variation=dest_variation)
        return jobs.count()


# =============================================================================
# Registry
# =============================================================================


class QueueRegistry:
    """Keyed lookup table holding the one queue of every (phase, category)."""

    def __init__(self, queues: dict[QueueKey, JobQueue]):
        self._queues = dict(queues)

    def get(self, phase: str, category: str) -> JobQueue:
        try:
            return self._queues[QueueKey(str(phase), str(category))]
        except KeyError:
            raise ConfigurationError(
                f"No queue for phase '{phase}' and category '{category}'",
                details={"phase": str(phase), "category": str(category)},
            ) from None

    def for_job(self, job: ProcessingJob) -> JobQueue:
        return self.get(job.phase, job.category)

    def __iter__(self) -> "Iterator[JobQueue]":
        return iter(self._queues.values())

    def __len__(self) -> int:
        return len(self._queues)


def build_queues(
    policy: RetryPolicy | None = None,
    kicker: Callable[[JobQueue, float | None], None] | None = celery_kicker,
) -> QueueRegistry:
    """
    Create the queue of every (phase, category) pair.

    Called once at startup. Concurrency limits are read from
    MEDIA_PIPELINE_QUEUE_CONCURRENCY, falling back to
    MEDIA_PIPELINE_DEFAULT_CONCURRENCY.
    """
    policy = policy or RetryPolicy.from_settings()
    overrides = settings.MEDIA_PIPELINE_QUEUE_CONCURRENCY
    queues = {}
    for phase in Phase:
        for category in MimeCategory:
            key = QueueKey(phase.value, category.value)
            queues[key] = JobQueue(
                key,
                policy=policy,
                concurrency=overrides.get(key.name, settings.MEDIA_PIPELINE_DEFAULT_CONCURRENCY),
                poll_interval=settings.MEDIA_PIPELINE_POLL_INTERVAL,
                kicker=kicker,
            )
    return QueueRegistry(queues)
