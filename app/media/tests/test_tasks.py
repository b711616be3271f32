"""
Tests for media Celery tasks.

Tests cover:
- process_media_file entry point
- Queue consumer routing and execution
- Periodic dispatch, stale lease release and history purge
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone
from freezegun import freeze_time

from media.categories import MimeCategory
from media.models import JobState, MediaFile, Phase, ProcessingJob
from media.tasks import (
    dispatch_waiting_jobs,
    kick_consumer,
    process_creation_queue,
    process_media_file,
    process_optimization_queue,
    purge_completed_jobs,
    release_stale_jobs,
)
from media.tests.factories import ProcessingJobFactory


@pytest.mark.django_db
class TestProcessMediaFile:
    """Tests for process_media_file task."""

    def test_queues_jobs(self, backglass_png):
        result = process_media_file.apply(args=[str(backglass_png.pk)]).get()

        assert result == {
            "status": "queued",
            "media_file_id": str(backglass_png.pk),
            "job_count": 5,
        }

    def test_not_found(self):
        missing = uuid.uuid4()

        result = process_media_file.apply(args=[str(missing)]).get()

        assert result == {"status": "not_found", "media_file_id": str(missing)}

    def test_reprocess_uses_backup(self, backglass_png):
        with open(backglass_png.get_backup_path(), "wb") as f:
            f.write(b"backup")

        process_media_file.apply(args=[str(backglass_png.pk)], kwargs={"reprocess": True})

        job = ProcessingJob.objects.filter(phase=Phase.CREATION).first()
        assert job.src_path == backglass_png.get_backup_path()


class TestKickConsumer:
    """Tests for kick_consumer()."""

    @patch("media.tasks.process_creation_queue.apply_async")
    def test_creation_routed_to_named_queue(self, mock_apply):
        kick_consumer(Phase.CREATION, MimeCategory.IMAGE)

        mock_apply.assert_called_once_with(args=["image"], queue="creation.image", countdown=None)

    @patch("media.tasks.process_optimization_queue.apply_async")
    def test_optimization_with_countdown(self, mock_apply):
        kick_consumer(Phase.OPTIMIZATION, MimeCategory.VIDEO, countdown=20)

        mock_apply.assert_called_once_with(args=["video"], queue="optimization.video", countdown=20)


@pytest.mark.django_db
class TestQueueConsumers:
    """Tests for process_creation_queue and process_optimization_queue."""

    def test_idle_queue(self):
        result = process_creation_queue.apply(args=["video"]).get()

        assert result == {"status": "idle", "queue": "creation.video"}

    def test_runs_next_job(self, pipeline, backglass_png):
        pipeline.service.process_file(backglass_png)

        result = process_creation_queue.apply(args=["image"]).get()

        job = ProcessingJob.objects.get(pk=result["job_id"])
        assert result["status"] == "processed"
        assert result["state"] == JobState.COMPLETED
        assert job.dest_variation == "small"

    def test_rekicks_while_jobs_are_due(self, pipeline, backglass_png):
        pipeline.service.process_file(backglass_png)
        queue = pipeline.queues.get(Phase.CREATION, MimeCategory.IMAGE)

        with patch.object(queue, "kick") as mock_kick:
            process_creation_queue.apply(args=["image"])

        mock_kick.assert_called_once_with()

    def test_optimization_consumer(self, pipeline, backglass_png):
        pipeline.service.process_file(backglass_png, filter_variations=lambda v: False)

        result = process_optimization_queue.apply(args=["image"]).get()

        backglass_png.refresh_from_db()
        assert result["queue"] == "optimization.image"
        assert backglass_png.processing_status == MediaFile.ProcessingStatus.READY


@pytest.mark.django_db
class TestPeriodicTasks:
    """Tests for the periodic maintenance tasks."""

    def test_dispatch_kicks_queues_with_due_jobs(self, pipeline):
        ProcessingJobFactory()
        ProcessingJobFactory(phase=Phase.OPTIMIZATION, category="video", processor="video.optimize")
        ProcessingJobFactory(category="video", available_at=timezone.now() + timedelta(minutes=5))

        with patch("media.queues.JobQueue.kick") as mock_kick:
            result = dispatch_waiting_jobs()

        assert result == {"kicked_count": 2}
        assert mock_kick.call_count == 2

    def test_release_stale_jobs(self):
        with freeze_time("2024-01-01 12:00:00") as frozen:
            stale = ProcessingJobFactory(active=True)
            fresh = ProcessingJobFactory(active=True, category="video")
            frozen.tick(timedelta(minutes=11, seconds=30))
            fresh.started_at = timezone.now()
            fresh.save()

            result = release_stale_jobs()

        stale.refresh_from_db()
        fresh.refresh_from_db()
        assert result == {"released_count": 1}
        assert stale.state == JobState.WAITING
        assert fresh.state == JobState.ACTIVE

    def test_purge_completed_jobs(self):
        old = ProcessingJobFactory(completed=True, finished_at=timezone.now() - timedelta(days=8))
        recent = ProcessingJobFactory(completed=True)
        dead = ProcessingJobFactory(dead_lettered=True, finished_at=timezone.now() - timedelta(days=30))

        result = purge_completed_jobs()

        assert result == {"deleted_count": 1}
        assert not ProcessingJob.objects.filter(pk=old.pk).exists()
        assert ProcessingJob.objects.filter(pk__in=[recent.pk, dead.pk]).count() == 2
