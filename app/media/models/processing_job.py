"""
ProcessingJob model: the durable storage behind the pipeline's job queues.

Every row is one unit of queued work on the (phase, category) queue named by
its columns. The payload columns are written once at enqueue time; only the
bookkeeping columns (state, attempts, timestamps, errors) change afterwards.

State Machine:
    WAITING ──start──> ACTIVE ──complete──> COMPLETED
       ^                 │
       └─────retry───────┤
                         └──dead_letter──> DEAD_LETTERED ──requeue──> WAITING

Ordering:
    Within a queue, jobs are handed out by ascending priority, then by
    ascending id, which is the enqueue order.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from core.models import BaseModel
from media.categories import MimeCategory

if TYPE_CHECKING:
    from datetime import datetime


class Phase(models.TextChoices):
    """Pipeline phases, one queue per phase and category."""

    CREATION = "creation", "Creation"
    OPTIMIZATION = "optimization", "Optimization"


class JobState(models.TextChoices):
    """Lifecycle of a queued job."""

    WAITING = "waiting", "Waiting"
    ACTIVE = "active", "Active"
    COMPLETED = "completed", "Completed"
    DEAD_LETTERED = "dead_lettered", "Dead-lettered"


LIVE_STATES = (JobState.WAITING, JobState.ACTIVE)
TERMINAL_STATES = (JobState.COMPLETED, JobState.DEAD_LETTERED)


class ProcessingJobQuerySet(models.QuerySet):
    """Query helpers for job selection."""

    def for_queue(self, phase: str, category: str) -> "ProcessingJobQuerySet":
        return self.filter(phase=phase, category=category)

    def for_file(self, file_id) -> "ProcessingJobQuerySet":
        return self.filter(file_id=file_id)

    def live(self) -> "ProcessingJobQuerySet":
        return self.filter(state__in=LIVE_STATES)

    def waiting(self) -> "ProcessingJobQuerySet":
        return self.filter(state=JobState.WAITING)

    def active(self) -> "ProcessingJobQuerySet":
        return self.filter(state=JobState.ACTIVE)

    def due(self, now: "datetime | None" = None) -> "ProcessingJobQuerySet":
        """Waiting jobs whose backoff delay has elapsed."""
        return self.waiting().filter(available_at__lte=now or timezone.now())

    def in_dequeue_order(self) -> "ProcessingJobQuerySet":
        return self.order_by("priority", "id")

    def state_counts(self) -> dict[str, int]:
        """Number of jobs per state, including states without jobs."""
        counts = {state: 0 for state in JobState.values}
        for row in self.values("state").annotate(count=models.Count("id")).order_by():
            counts[row["state"]] = row["count"]
        return counts


class ProcessingJob(BaseModel):
    """
    A queued creation or optimization job.

    Attributes:
        id: Auto-increment id, breaks priority ties in enqueue order.
        phase: Creation or optimization.
        category: Category of the destination, selects the queue.
        file_id: Id of the MediaFile. Not a foreign key: a job outlives a
            deleted file until a worker or cleanup notices.
        processor: Name of the processor resolved at enqueue time.
        src_path: File the processor reads.
        dest_path: File the processor writes.
        src_variation: Source variation name, empty for the original.
        dest_variation: Destination variation name, empty when optimizing
            the original.
        priority: Lower values are dequeued first.

    Bookkeeping:
        state: Current state (managed by FSM).
        attempts: Number of times the job was started.
        max_retries: Retries allowed after the first failed attempt.
        available_at: Earliest time the job may be pulled.
        started_at / finished_at: Lease timestamps of the last attempt.
        worker: Identifier of the worker holding the lease.
        last_error: Error of the last failed attempt.
        errors: One entry per failed attempt.
    """

    # =========================================================================
    # Payload
    # =========================================================================

    id = models.BigAutoField(primary_key=True)

    phase = models.CharField(
        max_length=20,
        choices=Phase.choices,
        help_text="Pipeline phase of the job",
    )

    category = models.CharField(
        max_length=20,
        choices=MimeCategory.choices,
        help_text="Category of the destination, selects the queue",
    )

    file_id = models.UUIDField(
        db_index=True,
        help_text="Id of the media file being processed",
    )

    processor = models.CharField(
        max_length=50,
        help_text="Name of the processor resolved at enqueue time",
    )

    src_path = models.CharField(max_length=500)

    dest_path = models.CharField(max_length=500)

    src_variation = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Source variation, empty for the original",
    )

    dest_variation = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Destination variation, empty for the original",
    )

    priority = models.IntegerField(
        default=0,
        help_text="Lower values are dequeued first",
    )

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    state = FSMField(
        default=JobState.WAITING,
        choices=JobState.choices,
        db_index=True,
        help_text="Current state of the job (managed by FSM)",
    )

    attempts = models.PositiveIntegerField(default=0)

    max_retries = models.PositiveIntegerField(default=3)

    available_at = models.DateTimeField(
        default=timezone.now,
        help_text="Earliest time the job may be pulled",
    )

    started_at = models.DateTimeField(null=True, blank=True)

    finished_at = models.DateTimeField(null=True, blank=True)

    worker = models.CharField(max_length=255, blank=True, default="")

    last_error = models.TextField(blank=True, default="")

    errors = models.JSONField(
        default=list,
        blank=True,
        help_text="One entry per failed attempt",
    )

    objects = ProcessingJobQuerySet.as_manager()

    class Meta:
        """Model metadata."""

        verbose_name = "Processing Job"
        verbose_name_plural = "Processing Jobs"
        ordering = ["priority", "id"]

        indexes = [
            models.Index(
                fields=["phase", "category", "state", "priority", "id"],
                name="idx_job_dequeue",
            ),
        ]

        constraints = [
            # Two live creation jobs must never write the same file
            models.UniqueConstraint(
                fields=["dest_path"],
                condition=models.Q(
                    phase="creation",
                    state__in=["waiting", "active"],
                ),
                name="unique_live_creation_dest_path",
            ),
        ]

    def __str__(self) -> str:
        target = self.dest_variation or "original"
        return f"{self.queue_name}#{self.pk} {self.processor} -> {target}"

    @property
    def queue_name(self) -> str:
        return f"{self.phase}.{self.category}"

    @property
    def failed_attempts(self) -> int:
        return len(self.errors)

    @property
    def retries_left(self) -> int:
        return max(self.max_retries + 1 - self.attempts, 0)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def _record_error(self, error: str) -> None:
        self.last_error = error
        self.errors = [
            *self.errors,
            {
                "attempt": self.attempts,
                "error": error,
                "at": timezone.now().isoformat(),
            },
        ]

    # =========================================================================
    # State Transitions
    # =========================================================================

    @transition(field=state, source=JobState.WAITING, target=JobState.ACTIVE)
    def start(self, worker: str = "") -> None:
        """Lease the job to a worker. Counts as one attempt."""
        self.attempts += 1
        self.started_at = timezone.now()
        self.finished_at = None
        self.worker = worker

    @transition(field=state, source=JobState.ACTIVE, target=JobState.COMPLETED)
    def complete(self) -> None:
        self.finished_at = timezone.now()

    @transition(field=state, source=JobState.ACTIVE, target=JobState.WAITING)
    def retry(self, error: str, delay: float) -> None:
        """
        Put a failed job back in line after a backoff delay.

        Transition: ACTIVE -> WAITING
        """
        self._record_error(error)
        self.finished_at = timezone.now()
        self.available_at = self.finished_at + timedelta(seconds=delay)
        self.worker = ""

    @transition(field=state, source=JobState.ACTIVE, target=JobState.DEAD_LETTERED)
    def dead_letter(self, error: str) -> None:
        """
        Park a job that exhausted its retries.

        Transition: ACTIVE -> DEAD_LETTERED

        Dead-lettered jobs stay in the table for inspection and are only
        picked up again after an explicit requeue.
        """
        self._record_error(error)
        self.finished_at = timezone.now()
        self.worker = ""

    @transition(field=state, source=JobState.DEAD_LETTERED, target=JobState.WAITING)
    def requeue(self) -> None:
        """
        Give a dead-lettered job a fresh retry budget.

        Transition: DEAD_LETTERED -> WAITING

        The error history is kept.
        """
        self.attempts = 0
        self.available_at = timezone.now()
        self.started_at = None
        self.finished_at = None
