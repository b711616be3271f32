"""
ProcessingService: sequencing of the media pipeline.

Queues know nothing about each other. This service decides which jobs exist
for a file and when:

1. process_file() enqueues the creation of every variation derived from the
   original, and every optimization of the original.
2. Once a variation exists (variation_created), handle_variation_created()
   enqueues its optimizations and the creation of the variations derived
   from it.

So a variation is only ever created from a source that is materialized, and
only ever optimized after it was created.

Usage:
    from media.pipeline import get_pipeline

    media_file = MediaFile.create_from_upload(upload, "backglass", "image/png")
    get_pipeline().service.process_file(media_file)
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Callable

from django.conf import settings
from django.utils import timezone

from core.services import BaseService
from media.exceptions import DestinationBusy, NoCreationJob, UnresolvedProcessor
from media.models import MediaFile, Phase, ProcessingJob
from media.queues import poll

if TYPE_CHECKING:
    from media.manager import ProcessorManager
    from media.processors import OptimizationProcessor
    from media.queues import JobHandle
    from media.variations import Variation


def tmp_suffix(processor) -> str:
    """Suffix of the in-flight output path of a processor."""
    return f"_{processor.name}.processing"


class ProcessingService(BaseService):
    """
    Coordinator between uploads, the processor manager and the queues.

    Args:
        manager: Resolves processors and enqueues jobs.
        poll_interval: Sleep between checks of the wait_for_*() methods,
            defaults to MEDIA_PIPELINE_POLL_INTERVAL.
    """

    def __init__(self, manager: "ProcessorManager", poll_interval: float | None = None):
        self.manager = manager
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.MEDIA_PIPELINE_POLL_INTERVAL
        )

    # =========================================================================
    # Entry Points
    # =========================================================================

    def process_file(
        self,
        media_file: MediaFile,
        src_path: str | None = None,
        filter_variations: Callable[["Variation"], bool] | None = None,
        filter_optimizations: Callable[["OptimizationProcessor"], bool] | None = None,
    ) -> list["JobHandle"]:
        """
        Enqueue the first jobs of a file.

        Variations with a source are not enqueued here, they follow once
        their source was created.

        Args:
            media_file: File to process.
            src_path: Path to read the original from, defaults to the
                stored original.
            filter_variations: Only create variations it returns True for.
            filter_optimizations: Only run optimization processors it
                returns True for.

        Returns:
            Handles of the enqueued jobs.

        Raises:
            AmbiguousProcessor: The processor set is misconfigured.
            QueueUnavailable: The job store is unreachable.
        """
        src_path = src_path or media_file.get_path()
        handles = []

        # Consumers are woken up on commit, after all jobs are stored
        with self.atomic():
            variations = [v for v in media_file.get_variations() if not v.source]
            if filter_variations:
                variations = [v for v in variations if filter_variations(v)]
            for variation in variations:
                handle = self._enqueue_creation(media_file, src_path, None, variation)
                if handle is not None:
                    handles.append(handle)

            processors = self.manager.resolve_optimization_processors(media_file)
            if filter_optimizations:
                processors = [p for p in processors if filter_optimizations(p)]
            for processor in processors:
                handles.append(
                    self.manager.enqueue_optimization(
                        processor,
                        media_file,
                        src_path,
                        media_file.get_path(None, tmp_suffix=tmp_suffix(processor)),
                    )
                )

            self._mark_started(media_file, has_jobs=bool(handles))

        self.get_logger().info(
            f"Queued {len(handles)} job(s) for {media_file.to_detailed_string()}",
            extra={"media_file_id": str(media_file.pk), "jobs": [str(h) for h in handles]},
        )
        return handles

    def reprocess_file(
        self,
        media_file: MediaFile,
        filter_variations: Callable[["Variation"], bool] | None = None,
        filter_optimizations: Callable[["OptimizationProcessor"], bool] | None = None,
    ) -> list["JobHandle"]:
        """
        Process a file again, starting from the untouched upload if kept.
        """
        backup_path = media_file.get_backup_path()
        src_path = backup_path if os.path.exists(backup_path) else media_file.get_path()
        return self.process_file(media_file, src_path, filter_variations, filter_optimizations)

    def handle_variation_created(self, media_file: MediaFile, variation: "Variation") -> list["JobHandle"]:
        """
        Enqueue the jobs that depend on a newly created variation.

        These are the optimizations of the variation itself and the
        creation of every variation derived from it.
        """
        src_path = media_file.get_path(variation)
        handles = []
        with self.atomic():
            if variation.optimizable:
                for processor in self.manager.resolve_optimization_processors(media_file, variation):
                    handles.append(
                        self.manager.enqueue_optimization(
                            processor,
                            media_file,
                            src_path,
                            media_file.get_path(variation, tmp_suffix=tmp_suffix(processor)),
                            variation,
                        )
                    )
            for dependent in media_file.get_dependent_variations(variation):
                handle = self._enqueue_creation(media_file, src_path, variation, dependent)
                if handle is not None:
                    handles.append(handle)
        return handles

    def delete_processing_file(self, media_file: MediaFile) -> int:
        """
        Stop processing a file that is being deleted.

        Waiting jobs are removed. Active jobs run to completion and their
        output is discarded by the worker since the file no longer exists.

        Returns:
            Number of removed jobs.
        """
        removed = sum(
            queue.remove_for_file(media_file.pk)
            for queue in self.manager.all_queues_for(media_file)
        )
        backup_path = media_file.get_backup_path()
        if os.path.exists(backup_path):
            os.remove(backup_path)
        self.get_logger().info(
            f"Stopped processing of {media_file.to_detailed_string()}",
            extra={"media_file_id": str(media_file.pk), "removed": removed},
        )
        return removed

    # =========================================================================
    # Queries
    # =========================================================================

    def has_remaining_creation_job(self, media_file: MediaFile, variation: "Variation") -> bool:
        """Whether a creation job for the variation is waiting or running."""
        queue = self.manager.queue_for(Phase.CREATION, media_file.get_category(variation))
        return queue.remaining_for(media_file.pk, variation.name) > 0

    def count_remaining_jobs(self) -> int:
        """Number of waiting or active jobs across all queues."""
        return ProcessingJob.objects.live().count()

    def modifies_file(self, media_file: MediaFile) -> bool:
        """Whether any optimization will rewrite the original."""
        return any(
            processor.modifies_file()
            for processor in self.manager.resolve_optimization_processors(media_file)
        )

    # =========================================================================
    # Waiting
    # =========================================================================

    def wait_for_variation_creation(
        self,
        media_file: MediaFile,
        variation: "Variation",
        timeout: float | None = None,
    ) -> bool:
        """
        Block until the creation job of a variation has finished.

        A job that ends up dead-lettered also ends the wait; check the
        variation file or the job to tell success from failure.

        Args:
            media_file: File the variation belongs to.
            variation: Variation being created.
            timeout: Seconds to wait, None to wait forever.

        Returns:
            True once no creation job for the variation is left, False on
            timeout.

        Raises:
            NoCreationJob: No creation job for the variation is waiting or
                running, so there is nothing to wait for.
        """
        if not self.has_remaining_creation_job(media_file, variation):
            raise NoCreationJob(
                f"There is currently no creation job for {media_file.to_detailed_string(variation)}",
                details={"media_file_id": str(media_file.pk), "variation": variation.name},
            )
        done = poll(
            lambda: not self.has_remaining_creation_job(media_file, variation),
            timeout,
            self.poll_interval,
        )
        if done:
            self.get_logger().debug(
                f"Finished waiting for {media_file.to_detailed_string(variation)}",
                extra={"media_file_id": str(media_file.pk), "variation": variation.name},
            )
        return bool(done)

    def wait_for_last_job(self, timeout: float | None = None) -> bool:
        """
        Block until every queue is empty.

        Returns:
            True once no job is waiting or running, False on timeout.
        """
        return bool(poll(lambda: self.count_remaining_jobs() == 0, timeout, self.poll_interval))

    # =========================================================================
    # Helpers
    # =========================================================================

    def _enqueue_creation(self, media_file, src_path, src_variation, dest_variation):
        logger = self.get_logger()
        try:
            processor = self.manager.resolve_creation_processor(media_file, src_variation, dest_variation)
        except UnresolvedProcessor as e:
            logger.warning(e.message, extra=e.to_dict())
            return None

        dest_path = media_file.get_path(dest_variation, tmp_suffix=tmp_suffix(processor))
        try:
            return self.manager.enqueue_creation(
                processor, media_file, src_path, dest_path, src_variation, dest_variation
            )
        except DestinationBusy as e:
            logger.info(
                f"{media_file.to_detailed_string(dest_variation)} is already being created",
                extra=e.to_dict(),
            )
            return None

    def _mark_started(self, media_file: MediaFile, has_jobs: bool) -> None:
        now = timezone.now()
        media_file.processing_error = None
        if has_jobs or self.count_remaining_for(media_file):
            media_file.processing_status = MediaFile.ProcessingStatus.PROCESSING
            media_file.processing_started_at = now
            media_file.processing_completed_at = None
        else:
            # Nothing to derive (e.g. release archives)
            media_file.processing_status = MediaFile.ProcessingStatus.READY
            media_file.processing_completed_at = now
        media_file.save(
            update_fields=[
                "processing_status",
                "processing_error",
                "processing_started_at",
                "processing_completed_at",
                "updated_at",
            ]
        )

    @staticmethod
    def count_remaining_for(media_file: MediaFile) -> int:
        """Number of waiting or active jobs of a file."""
        return ProcessingJob.objects.for_file(media_file.pk).live().count()
