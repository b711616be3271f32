"""
Tests for the job queues.

Tests cover:
- Priority and FIFO ordering of pulls
- Retry with exponential backoff and dead-lettering
- Destination exclusivity of creation jobs
- Administration (drain, remove, requeue, stale lease release)
- Retry policy validation
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from django.core.exceptions import ImproperlyConfigured
from django.db import OperationalError
from django.utils import timezone
from freezegun import freeze_time
from kombu.exceptions import OperationalError as BrokerError

from core.exceptions import ConfigurationError
from media.exceptions import DestinationBusy, QueueUnavailable
from media.models import JobState, Phase, ProcessingJob
from media.queues import JobHandle, JobQueue, QueueKey, RetryPolicy, build_queues
from media.signals import job_dead_lettered, job_failed
from media.tests.factories import ProcessingJobFactory


@pytest.fixture
def queue(retry_policy) -> JobQueue:
    """Image creation queue without a concurrency limit."""
    return JobQueue(
        QueueKey(Phase.CREATION, "image"),
        policy=retry_policy,
        concurrency=None,
        kicker=None,
    )


def push(queue: JobQueue, dest: str, priority: int = 0, file_id=None) -> JobHandle:
    return queue.push(
        file_id=file_id or uuid.uuid4(),
        processor="image.variation",
        src_path="/media/src.png",
        dest_path=dest,
        dest_variation="small",
        priority=priority,
    )


@pytest.mark.django_db
class TestOrdering:
    """Tests for pull order."""

    def test_lowest_priority_value_first(self, queue):
        for priority in (5, 1, 3):
            push(queue, f"/media/{priority}.png", priority=priority)

        pulled = [queue.pull().priority for _ in range(3)]

        assert pulled == [1, 3, 5]

    def test_equal_priority_in_enqueue_order(self, queue):
        handles = [push(queue, f"/media/{n}.png") for n in range(3)]

        pulled = [queue.pull().pk for _ in range(3)]

        assert pulled == [h.id for h in handles]

    def test_empty_queue_returns_none(self, queue):
        assert queue.pull() is None

    def test_blocking_pull_times_out(self, queue):
        queue.poll_interval = 0.01

        assert queue.pull(block=True, timeout=0.05) is None

    def test_pull_leases_job(self, queue):
        push(queue, "/media/a.png")

        job = queue.pull(worker="worker-7")

        assert job.state == JobState.ACTIVE
        assert job.worker == "worker-7"
        assert job.attempts == 1

    def test_queues_are_independent(self, queue, retry_policy):
        other = JobQueue(QueueKey(Phase.CREATION, "video"), policy=retry_policy, kicker=None)
        push(queue, "/media/a.png")

        assert other.pull() is None
        assert queue.pull() is not None

    def test_concurrency_limit(self, queue):
        queue.concurrency = 1
        push(queue, "/media/a.png")
        push(queue, "/media/b.png")

        first = queue.pull()

        assert queue.pull() is None
        queue.ack(first)
        assert queue.pull() is not None


@pytest.mark.django_db
class TestPush:
    """Tests for push()."""

    def test_returns_handle(self, queue):
        handle = push(queue, "/media/a.png")

        assert handle.queue == "creation.image"
        assert str(handle) == f"creation.image#{handle.id}"
        assert ProcessingJob.objects.get(pk=handle.id).max_retries == 3

    def test_same_destination_is_busy(self, queue):
        push(queue, "/media/a.png")

        with pytest.raises(DestinationBusy) as exc_info:
            push(queue, "/media/a.png")

        assert exc_info.value.details["dest_path"] == "/media/a.png"

    def test_destination_free_after_completion(self, queue):
        push(queue, "/media/a.png")
        queue.ack(queue.pull())

        push(queue, "/media/a.png")

        assert queue.jobs().waiting().count() == 1

    def test_store_failure_raises_queue_unavailable(self, queue):
        with patch.object(
            ProcessingJob.objects, "create", side_effect=OperationalError("connection refused")
        ):
            with pytest.raises(QueueUnavailable):
                push(queue, "/media/a.png")

    def test_kick_deferred_to_commit(self, queue, django_capture_on_commit_callbacks):
        kicker = MagicMock()
        queue.kicker = kicker

        with django_capture_on_commit_callbacks(execute=True):
            push(queue, "/media/a.png")

        kicker.assert_called_once_with(queue, None)

    def test_broker_error_on_kick_is_logged(self, queue):
        queue.kicker = MagicMock(side_effect=BrokerError("broker down"))

        queue.kick()

        queue.kicker.assert_called_once()


@pytest.mark.django_db
class TestRetries:
    """Tests for fail() and the retry policy."""

    def test_failure_delays_retry(self, queue):
        with freeze_time("2024-01-01 12:00:00") as frozen:
            push(queue, "/media/a.png")
            job = queue.pull()

            state = queue.fail(job, "boom")

            assert state == JobState.WAITING
            assert queue.pull() is None
            frozen.tick(timedelta(seconds=10))
            assert queue.pull().pk == job.pk

    def test_backoff_doubles(self, queue):
        with freeze_time("2024-01-01 12:00:00") as frozen:
            push(queue, "/media/a.png")
            job = queue.pull()
            queue.fail(job, "first")
            frozen.tick(timedelta(seconds=10))
            job = queue.pull()

            queue.fail(job, "second")

            assert job.available_at == timezone.now() + timedelta(seconds=20)

    def test_dead_lettered_after_retries(self, queue):
        with freeze_time("2024-01-01 12:00:00") as frozen:
            push(queue, "/media/a.png")
            states = []
            for _ in range(4):
                job = queue.pull()
                states.append(queue.fail(job, "boom"))
                frozen.tick(timedelta(seconds=300))

        assert states == [JobState.WAITING] * 3 + [JobState.DEAD_LETTERED]
        assert job.failed_attempts == 4
        assert queue.pull() is None

    def test_permanent_failure_skips_retries(self, queue):
        push(queue, "/media/a.png")
        job = queue.pull()

        assert queue.fail(job, "corrupt", permanent=True) == JobState.DEAD_LETTERED
        assert job.attempts == 1

    def test_failing_finished_job_is_noop(self, queue):
        push(queue, "/media/a.png")
        job = queue.pull()
        queue.fail(job, "corrupt", permanent=True)
        receiver = MagicMock()
        job_dead_lettered.connect(receiver)

        try:
            state = queue.fail(job, "again", permanent=True)
        finally:
            job_dead_lettered.disconnect(receiver)

        assert state == JobState.DEAD_LETTERED
        assert job.failed_attempts == 1
        receiver.assert_not_called()

    def test_signals_sent(self, queue):
        failed, dead = MagicMock(), MagicMock()
        job_failed.connect(failed)
        job_dead_lettered.connect(dead)
        push(queue, "/media/a.png")

        try:
            job = queue.pull()
            queue.fail(job, "boom")
            job.refresh_from_db()
            ProcessingJob.objects.filter(pk=job.pk).update(available_at=timezone.now())
            job = queue.pull()
            queue.fail(job, "corrupt", permanent=True)
        finally:
            job_failed.disconnect(failed)
            job_dead_lettered.disconnect(dead)

        assert failed.call_args.kwargs["delay"] == 10
        assert failed.call_args.kwargs["queue"] == "creation.image"
        assert dead.call_args.kwargs["error"] == "corrupt"

    def test_ack_after_lost_lease_returns_false(self, queue):
        push(queue, "/media/a.png")
        job = queue.pull()
        queue.fail(job, "lease expired")

        assert queue.ack(job) is False


@pytest.mark.django_db
class TestAdministration:
    """Tests for drain, remove, requeue and stale lease release."""

    def test_drain_keeps_active_jobs(self, queue):
        push(queue, "/media/a.png")
        push(queue, "/media/b.png")
        active = queue.pull()

        assert queue.drain() == 1
        assert list(queue.jobs()) == [active]

    def test_remove_waiting_job(self, queue):
        handle = push(queue, "/media/a.png")

        assert queue.remove(handle) is True
        assert queue.remove(handle) is False

    def test_remove_for_file(self, queue):
        file_id = uuid.uuid4()
        push(queue, "/media/a.png", file_id=file_id)
        push(queue, "/media/b.png", file_id=file_id)
        push(queue, "/media/c.png")

        assert queue.remove_for_file(file_id) == 2
        assert queue.remaining_for(file_id) == 0

    def test_requeue_dead_lettered_job(self, queue):
        push(queue, "/media/a.png")
        job = queue.pull()
        queue.fail(job, "corrupt", permanent=True)

        queue.requeue(job)

        assert job.state == JobState.WAITING
        assert queue.pull().pk == job.pk

    def test_requeue_refused_when_destination_taken(self, queue):
        push(queue, "/media/a.png")
        job = queue.pull()
        queue.fail(job, "corrupt", permanent=True)
        push(queue, "/media/a.png")

        with pytest.raises(DestinationBusy):
            queue.requeue(job)

    def test_release_expired_fails_stale_job(self, queue):
        with freeze_time("2024-01-01 12:00:00") as frozen:
            push(queue, "/media/a.png")
            stale = queue.pull()
            frozen.tick(timedelta(minutes=15))

            released = queue.release_expired(timeout=600)

        stale.refresh_from_db()
        assert released == 1
        assert stale.state == JobState.WAITING
        assert "Lease expired" in stale.last_error

    def test_release_expired_keeps_fresh_job(self, queue):
        push(queue, "/media/a.png")
        queue.pull()

        assert queue.release_expired(timeout=600) == 0

    def test_purge_completed(self, queue):
        ProcessingJobFactory(completed=True, finished_at=timezone.now() - timedelta(days=10))
        ProcessingJobFactory(completed=True)

        assert queue.purge_completed(before=timezone.now() - timedelta(days=7)) == 1

    def test_counts(self, queue):
        push(queue, "/media/a.png")
        push(queue, "/media/b.png")
        queue.pull()

        assert queue.counts() == {"waiting": 1, "active": 1, "completed": 0, "dead_lettered": 0}


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_delays_double_until_cap(self):
        policy = RetryPolicy(max_retries=4, backoff_seconds=10, backoff_max_seconds=100)

        assert policy.delays() == [10, 20, 40, 80]
        assert policy.delay(10) == 100

    def test_cap_flattening_backoff_is_rejected(self):
        policy = RetryPolicy(max_retries=5, backoff_seconds=10, backoff_max_seconds=60)

        with pytest.raises(ImproperlyConfigured):
            policy.validate()

    def test_non_positive_base_is_rejected(self):
        with pytest.raises(ImproperlyConfigured):
            RetryPolicy(backoff_seconds=0).validate()

    def test_from_settings(self, settings):
        settings.MEDIA_PIPELINE_MAX_RETRIES = 2
        settings.MEDIA_PIPELINE_BACKOFF_SECONDS = 5

        policy = RetryPolicy.from_settings()

        assert policy.max_retries == 2
        assert policy.delays() == [5, 10]


class TestQueueRegistry:
    """Tests for build_queues() and QueueRegistry."""

    def test_one_queue_per_phase_and_category(self, retry_policy):
        queues = build_queues(policy=retry_policy, kicker=None)

        assert len(queues) == 14
        assert queues.get(Phase.OPTIMIZATION, "video").name == "optimization.video"

    def test_concurrency_overrides(self, settings, retry_policy):
        settings.MEDIA_PIPELINE_QUEUE_CONCURRENCY = {"creation.image": 4}

        queues = build_queues(policy=retry_policy, kicker=None)

        assert queues.get("creation", "image").concurrency == 4
        assert queues.get("creation", "video").concurrency == 1

    def test_unknown_queue_raises(self, retry_policy):
        queues = build_queues(policy=retry_policy, kicker=None)

        with pytest.raises(ConfigurationError):
            queues.get("creation", "hologram")
