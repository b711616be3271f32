"""
Django signals for the media pipeline.

Outbound notifications sent by the pipeline:
    variation_created: A creation job succeeded; the variation file exists.
        kwargs: media_file, variation, job, result
    file_optimized: An optimization job succeeded on a variation or the
        original (variation is None).
        kwargs: media_file, variation, job, processor, result
    job_failed: A job attempt failed and was put back in line.
        kwargs: queue, job, error, delay
    job_dead_lettered: A job exhausted its retries.
        kwargs: queue, job, error

The receivers in this module keep the record store (MediaFile, MediaAsset)
in sync. Sequencing of follow-up jobs is connected separately by the
pipeline bootstrap, see media.pipeline.
"""

from __future__ import annotations

import logging
import os

from django.db import transaction
from django.dispatch import Signal
from django.utils import timezone

logger = logging.getLogger(__name__)


variation_created = Signal()
file_optimized = Signal()
job_failed = Signal()
job_dead_lettered = Signal()


def connect_signals():
    """
    Connect the record store receivers.

    Called from MediaConfig.ready() to ensure signals are connected
    after all models are loaded.
    """
    variation_created.connect(
        record_materialized_variation,
        dispatch_uid="media_record_materialized_variation",
    )
    file_optimized.connect(
        record_optimization,
        dispatch_uid="media_record_optimization",
    )
    job_dead_lettered.connect(
        flag_degraded_file,
        dispatch_uid="media_flag_degraded_file",
    )

    logger.debug("Media signals connected")


def notify(signal, sender, **kwargs) -> None:
    """
    Send a signal to all receivers. Receiver errors are logged, never raised.
    """
    for receiver, response in signal.send_robust(sender=sender, **kwargs):
        if isinstance(response, Exception):
            logger.error(
                "Signal receiver failed",
                exc_info=response,
                extra={
                    "sender": getattr(sender, "__name__", repr(sender)),
                    "receiver": getattr(receiver, "__name__", repr(receiver)),
                },
            )


def record_materialized_variation(sender, media_file, variation, job, result=None, **kwargs):
    """
    Create or refresh the MediaAsset of a freshly created variation.

    Args:
        sender: Worker class.
        media_file: MediaFile the variation belongs to.
        variation: Variation that was created.
        job: The acknowledged ProcessingJob.
        result: Optional dict returned by the processor (width, height).
    """
    from media.models import MediaAsset

    result = result or {}
    path = media_file.get_path(variation)
    asset, created = MediaAsset.objects.update_or_create(
        media_file=media_file,
        variation=variation.name,
        defaults={
            "file": media_file.get_relative_path(variation),
            "file_size": os.path.getsize(path) if os.path.exists(path) else 0,
            "width": result.get("width"),
            "height": result.get("height"),
            "optimized_by": [],
            "optimized_at": None,
        },
    )
    logger.info(
        "Variation materialized",
        extra={
            "media_file_id": str(media_file.pk),
            "variation": variation.name,
            "asset_id": str(asset.pk),
            "job_id": job.pk,
            "is_new": created,
        },
    )
    _refresh_processing_status(media_file)


def record_optimization(sender, media_file, variation, job, processor, result=None, **kwargs):
    """
    Mark a variation or the original as optimized.

    Results reported for the original (e.g. the table block index) are
    stored in the file metadata under the processor name. Results for a
    variation describe that variation only and are not stored there.
    """
    from media.models import MediaAsset

    now = timezone.now()
    if variation is None:
        _record_original_optimization(media_file, processor, result, now)
    else:
        with transaction.atomic():
            asset = (
                MediaAsset.objects.select_for_update()
                .filter(media_file=media_file, variation=variation.name)
                .first()
            )
            if asset is None:
                logger.warning(
                    "Optimized variation has no asset record",
                    extra={
                        "media_file_id": str(media_file.pk),
                        "variation": variation.name,
                        "job_id": job.pk,
                    },
                )
            else:
                if processor not in asset.optimized_by:
                    asset.optimized_by = [*asset.optimized_by, processor]
                asset.optimized_at = now
                path = media_file.get_path(variation)
                if os.path.exists(path):
                    asset.file_size = os.path.getsize(path)
                asset.save(update_fields=["optimized_by", "optimized_at", "file_size", "updated_at"])

    logger.info(
        "File optimized",
        extra={
            "media_file_id": str(media_file.pk),
            "variation": variation.name if variation else None,
            "processor": processor,
            "job_id": job.pk,
        },
    )
    _refresh_processing_status(media_file)


def _record_original_optimization(media_file, processor, result, now) -> None:
    from media.models import MediaFile

    with transaction.atomic():
        # Other queues write metadata of the same file concurrently
        current = MediaFile.objects.select_for_update().filter(pk=media_file.pk).first()
        if current is None:
            return
        current.optimized_at = now
        update_fields = ["optimized_at", "updated_at"]
        if result:
            current.metadata[processor] = result
            update_fields.append("metadata")
        current.save(update_fields=update_fields)
    media_file.optimized_at = current.optimized_at
    media_file.metadata = current.metadata


def flag_degraded_file(sender, job, error, **kwargs):
    """Flag the file of a dead-lettered job as degraded."""
    from media.models import MediaFile

    updated = MediaFile.objects.filter(pk=job.file_id).update(
        processing_status=MediaFile.ProcessingStatus.DEGRADED,
        processing_error=f"{job.processor}: {error}",
        processing_completed_at=timezone.now(),
    )
    if updated:
        logger.error(
            "Media file degraded by dead-lettered job",
            extra={
                "media_file_id": str(job.file_id),
                "job_id": job.pk,
                "processor": job.processor,
                "error": error,
            },
        )


def _refresh_processing_status(media_file) -> None:
    """Mark the file ready once no job for it is left in any queue."""
    from media.models import MediaFile, ProcessingJob

    if ProcessingJob.objects.for_file(media_file.pk).live().exists():
        return
    now = timezone.now()
    # A degraded flag set by another queue in the meantime must survive
    updated = (
        MediaFile.objects.filter(pk=media_file.pk)
        .exclude(processing_status=MediaFile.ProcessingStatus.DEGRADED)
        .update(
            processing_status=MediaFile.ProcessingStatus.READY,
            processing_completed_at=now,
            updated_at=now,
        )
    )
    if updated:
        media_file.processing_status = MediaFile.ProcessingStatus.READY
        media_file.processing_completed_at = now
