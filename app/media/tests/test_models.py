"""
Tests for media models.

Tests cover:
- MediaFile creation from uploads
- Variation lookups and path helpers
- MediaAsset uniqueness
- ProcessingJob state transitions and constraints
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from django.core.exceptions import ValidationError
from django.core.files.uploadedfile import SimpleUploadedFile
from django.db import IntegrityError, transaction
from django.utils import timezone
from django_fsm import TransitionNotAllowed
from freezegun import freeze_time

from media.categories import MimeCategory
from media.exceptions import UnknownMimeType
from media.models import JobState, MediaFile, Phase, ProcessingJob
from media.tests.factories import MediaAssetFactory, MediaFileFactory, ProcessingJobFactory


@pytest.mark.django_db
class TestMediaFileCreation:
    """Tests for MediaFile.create_from_upload()."""

    def test_stores_original_under_uuid_directory(self, backglass_png, media_root):
        assert backglass_png.file.name == f"backglass/{backglass_png.pk}/original.png"
        assert (media_root / "backglass" / str(backglass_png.pk) / "original.png").exists()

    def test_records_upload_attributes(self, backglass_png, sample_png):
        assert backglass_png.original_filename == "backglass.png"
        assert backglass_png.file_size == len(sample_png)
        assert backglass_png.processing_status == MediaFile.ProcessingStatus.PENDING

    def test_rejects_mime_type_not_accepted_by_kind(self, sample_jpeg):
        upload = SimpleUploadedFile("logo.jpg", sample_jpeg, content_type="image/jpeg")

        with pytest.raises(ValidationError):
            MediaFile.create_from_upload(upload, "logo", "image/jpeg")

    def test_rejects_unknown_mime_type(self):
        upload = SimpleUploadedFile("doc.pdf", b"%PDF-1.4", content_type="application/pdf")

        with pytest.raises(UnknownMimeType):
            MediaFile.create_from_upload(upload, "backglass", "application/pdf")

        assert MediaFile.objects.count() == 0

    def test_stores_metadata(self, sample_png):
        upload = SimpleUploadedFile("bg.png", sample_png, content_type="image/png")

        media_file = MediaFile.create_from_upload(
            upload, "backglass", "image/png", metadata={"author": "freezy"}
        )

        assert media_file.get_meta("author") == "freezy"


@pytest.mark.django_db
class TestMediaFileVariations:
    """Tests for variation lookups on MediaFile."""

    def test_get_variation_by_name(self):
        media_file = MediaFileFactory()

        assert media_file.get_variation("medium").width == 364

    def test_get_variation_none_is_original(self):
        assert MediaFileFactory().get_variation(None) is None

    def test_get_variation_unknown_is_none(self):
        assert MediaFileFactory().get_variation("huge") is None

    def test_dependent_variations(self, backglass_directb2s):
        full = backglass_directb2s.get_variation("full")

        names = [v.name for v in backglass_directb2s.get_dependent_variations(full)]

        assert names == ["small", "medium"]

    def test_category_of_variation_with_own_mime_type(self, playfield_video):
        assert playfield_video.category == MimeCategory.VIDEO
        assert playfield_video.get_category(playfield_video.get_variation("still")) == MimeCategory.IMAGE

    def test_is_materialized(self):
        asset = MediaAssetFactory(variation="small")
        media_file = asset.media_file

        assert media_file.is_materialized(media_file.get_variation("small"))
        assert not media_file.is_materialized(media_file.get_variation("medium"))


@pytest.mark.django_db
class TestMediaFilePaths:
    """Tests for path helpers."""

    def test_variation_path_uses_variation_mime_type(self, backglass_directb2s, media_root):
        path = backglass_directb2s.get_path(backglass_directb2s.get_variation("full"))

        assert path == str(media_root / "backglass" / str(backglass_directb2s.pk) / "full.jpg")

    def test_original_path(self, backglass_directb2s, media_root):
        path = backglass_directb2s.get_path()

        assert path == str(media_root / "backglass" / str(backglass_directb2s.pk) / "original.directb2s")

    def test_tmp_suffix_goes_before_extension(self, backglass_png):
        path = backglass_png.get_path(
            backglass_png.get_variation("small"), tmp_suffix="_image.variation.processing"
        )

        assert Path(path).name == "small_image.variation.processing.png"

    def test_backup_path(self, backglass_png):
        assert Path(backglass_png.get_backup_path()).name == "original_backup.png"

    def test_detailed_string(self, backglass_png):
        text = backglass_png.to_detailed_string(backglass_png.get_variation("small"))

        assert text == f"backglass {backglass_png.pk}@small (image/png)"


@pytest.mark.django_db
class TestMediaAsset:
    """Tests for MediaAsset."""

    def test_one_asset_per_variation(self):
        asset = MediaAssetFactory(variation="small")

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                MediaAssetFactory(media_file=asset.media_file, variation="small")

    def test_is_optimized(self):
        asset = MediaAssetFactory()
        assert not asset.is_optimized

        asset.optimized_at = timezone.now()
        assert asset.is_optimized


@pytest.mark.django_db
class TestProcessingJobTransitions:
    """Tests for the ProcessingJob state machine."""

    def test_start_counts_attempt(self):
        job = ProcessingJobFactory()

        job.start(worker="worker-1")

        assert job.state == JobState.ACTIVE
        assert job.attempts == 1
        assert job.worker == "worker-1"
        assert job.started_at is not None

    @freeze_time("2024-01-01 12:00:00")
    def test_retry_delays_availability(self):
        job = ProcessingJobFactory(active=True)

        job.retry("boom", delay=20)

        assert job.state == JobState.WAITING
        assert job.available_at == timezone.now() + timedelta(seconds=20)
        assert job.last_error == "boom"
        assert job.failed_attempts == 1

    def test_dead_letter_records_error(self):
        job = ProcessingJobFactory(active=True)

        job.dead_letter("corrupt")

        assert job.state == JobState.DEAD_LETTERED
        assert job.is_terminal
        assert job.errors[-1]["error"] == "corrupt"

    def test_requeue_resets_attempts_keeps_history(self):
        job = ProcessingJobFactory(dead_lettered=True)

        job.requeue()

        assert job.state == JobState.WAITING
        assert job.attempts == 0
        assert job.failed_attempts == 1

    def test_cannot_complete_waiting_job(self):
        job = ProcessingJobFactory()

        with pytest.raises(TransitionNotAllowed):
            job.complete()

    def test_retries_left(self):
        job = ProcessingJobFactory(active=True, max_retries=3)

        assert job.retries_left == 3

    def test_queue_name(self):
        job = ProcessingJobFactory(phase=Phase.OPTIMIZATION, category="video")

        assert job.queue_name == "optimization.video"


@pytest.mark.django_db
class TestProcessingJobConstraints:
    """Tests for the destination exclusivity constraint."""

    def test_two_live_creation_jobs_cannot_share_destination(self):
        job = ProcessingJobFactory()

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                ProcessingJobFactory(dest_path=job.dest_path, active=True)

    def test_finished_job_frees_destination(self):
        job = ProcessingJobFactory(completed=True)

        ProcessingJobFactory(dest_path=job.dest_path)

        assert ProcessingJob.objects.filter(dest_path=job.dest_path).count() == 2

    def test_optimization_jobs_may_share_destination(self):
        job = ProcessingJobFactory(phase=Phase.OPTIMIZATION, processor="image.optimize")

        ProcessingJobFactory(
            phase=Phase.OPTIMIZATION, processor="image.optimize", dest_path=job.dest_path
        )

        assert ProcessingJob.objects.filter(dest_path=job.dest_path).count() == 2

    def test_state_counts_include_empty_states(self):
        ProcessingJobFactory()
        ProcessingJobFactory(dead_lettered=True)

        counts = ProcessingJob.objects.state_counts()

        assert counts == {"waiting": 1, "active": 0, "completed": 0, "dead_lettered": 1}
