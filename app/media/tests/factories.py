"""
Factory Boy factories for media models.

Provides realistic test data generation for:
- MediaFile: Uploaded backglass images
- MediaAsset: Materialized variations
- ProcessingJob: Queued creation and optimization jobs

Usage:
    from media.tests.factories import MediaFileFactory, ProcessingJobFactory

    media_file = MediaFileFactory()
    job = ProcessingJobFactory(priority=5)
    dead = ProcessingJobFactory(dead_lettered=True)
"""

import uuid

import factory
from django.utils import timezone

from media.models import JobState, MediaAsset, MediaFile, Phase, ProcessingJob


class MediaFileFactory(factory.django.DjangoModelFactory):
    """
    Factory for MediaFile model.

    Creates a PNG backglass by default.

    Examples:
        media_file = MediaFileFactory()
        logo = MediaFileFactory(file_type="logo")
    """

    class Meta:
        model = MediaFile

    file = factory.django.ImageField(width=800, height=600, format="PNG", filename="upload.png")
    original_filename = factory.Sequence(lambda n: f"backglass_{n}.png")
    file_type = "backglass"
    mime_type = "image/png"
    file_size = 1024


class MediaAssetFactory(factory.django.DjangoModelFactory):
    """Factory for MediaAsset model."""

    class Meta:
        model = MediaAsset

    media_file = factory.SubFactory(MediaFileFactory)
    variation = "small"
    file = factory.LazyAttribute(
        lambda o: f"{o.media_file.file_type}/{o.media_file.pk}/{o.variation}.png"
    )
    width = 253
    height = 190
    file_size = 2048


class ProcessingJobFactory(factory.django.DjangoModelFactory):
    """
    Factory for ProcessingJob model.

    Creates a waiting image creation job by default.

    Examples:
        job = ProcessingJobFactory()
        active = ProcessingJobFactory(active=True)
        dead = ProcessingJobFactory(dead_lettered=True)
    """

    class Meta:
        model = ProcessingJob

    phase = Phase.CREATION
    category = "image"
    file_id = factory.LazyFunction(uuid.uuid4)
    processor = "image.variation"
    src_path = factory.LazyAttribute(lambda o: f"/media/backglass/{o.file_id}/original.png")
    dest_path = factory.Sequence(lambda n: f"/media/backglass/{n}/small_image.variation.processing.png")
    src_variation = ""
    dest_variation = "small"
    priority = 100
    state = JobState.WAITING

    class Params:
        active = factory.Trait(
            state=JobState.ACTIVE,
            attempts=1,
            started_at=factory.LazyFunction(timezone.now),
            worker="worker-1",
        )
        dead_lettered = factory.Trait(
            state=JobState.DEAD_LETTERED,
            attempts=4,
            finished_at=factory.LazyFunction(timezone.now),
            last_error="boom",
            errors=factory.LazyFunction(lambda: [{"attempt": 4, "error": "boom"}]),
        )
        completed = factory.Trait(
            state=JobState.COMPLETED,
            attempts=1,
            finished_at=factory.LazyFunction(timezone.now),
        )
