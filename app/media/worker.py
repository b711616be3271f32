"""
Processor worker.

Executes one leased job: runs the named processor, moves its output onto
the final path, acknowledges the job and announces the result.

Outputs are always written to the job's temporary destination path first.
Readers of the final path therefore never see a partially written file.

Failure handling:
    Any exception raised while executing a job, including Celery's
    SoftTimeLimitExceeded for the phase timeout, is recorded with
    JobQueue.fail(). Permanent processing errors and configuration errors
    dead-letter the job right away, everything else follows the retry
    policy. The temporary output is removed in both cases.
"""

from __future__ import annotations

import logging
import os
import shutil
from typing import TYPE_CHECKING, Any

from celery.exceptions import SoftTimeLimitExceeded

from core.exceptions import ConfigurationError
from media.exceptions import TransformationFailure
from media.models import MediaFile, Phase
from media.processors import PermanentProcessingError
from media.signals import file_optimized, notify, variation_created

if TYPE_CHECKING:
    from media.manager import ProcessorManager
    from media.models import ProcessingJob
    from media.queues import JobQueue

logger = logging.getLogger(__name__)


class ProcessorWorker:
    """
    Runs jobs pulled from the queues of a processor manager.

    Args:
        manager: Provides the processors and the queue registry.
    """

    def __init__(self, manager: "ProcessorManager"):
        self.manager = manager

    def run(self, job: "ProcessingJob") -> str:
        """
        Execute a leased job and settle it with its queue.

        Returns:
            The resulting job state.
        """
        queue = self.manager.queues.for_job(job)
        try:
            if job.phase == Phase.CREATION:
                self.run_creation(job, queue)
            else:
                self.run_optimization(job, queue)
        except Exception as e:
            failure = self._to_failure(job, e)
            self._discard(job.dest_path)
            return queue.fail(job, failure.message, permanent=failure.permanent)
        return job.state

    # =========================================================================
    # Phases
    # =========================================================================

    def run_creation(self, job: "ProcessingJob", queue: "JobQueue") -> None:
        """Create a variation from its source and record it."""
        media_file = self._get_media_file(job, queue)
        if media_file is None:
            return

        processor = self.manager.get_creation_processor(job.processor)
        dest_variation = self._get_variation(media_file, job.dest_variation)
        src_variation = self._get_variation(media_file, job.src_variation or None)

        logger.info(
            f"Creating {media_file.to_detailed_string(dest_variation)} from "
            f"{media_file.to_detailed_string(src_variation)}",
            extra={"job_id": job.pk, "processor": processor.name, "attempt": job.attempts},
        )
        os.makedirs(os.path.dirname(job.dest_path), exist_ok=True)
        result = processor.run(media_file, job.src_path, job.dest_path, src_variation, dest_variation)

        os.replace(job.dest_path, media_file.get_path(dest_variation))
        if not queue.ack(job):
            return

        notify(
            variation_created,
            sender=self.__class__,
            media_file=media_file,
            variation=dest_variation,
            job=job,
            result=result,
        )

    def run_optimization(self, job: "ProcessingJob", queue: "JobQueue") -> None:
        """Optimize a variation (or the original) and record it."""
        media_file = self._get_media_file(job, queue)
        if media_file is None:
            return

        processor = self.manager.get_optimization_processor(job.processor)
        variation = self._get_variation(media_file, job.dest_variation or None)

        logger.info(
            f"Optimizing {media_file.to_detailed_string(variation)}",
            extra={"job_id": job.pk, "processor": processor.name, "attempt": job.attempts},
        )
        os.makedirs(os.path.dirname(job.dest_path), exist_ok=True)
        result = processor.run(media_file, job.src_path, job.dest_path, variation)

        if processor.modifies_file():
            if variation is None:
                self._backup_original(media_file)
            os.replace(job.dest_path, media_file.get_path(variation))
        else:
            self._discard(job.dest_path)
        if not queue.ack(job):
            return

        notify(
            file_optimized,
            sender=self.__class__,
            media_file=media_file,
            variation=variation,
            job=job,
            processor=processor.name,
            result=result,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get_media_file(self, job: "ProcessingJob", queue: "JobQueue") -> MediaFile | None:
        """Load the job's file. Jobs of deleted files are acknowledged unprocessed."""
        media_file = MediaFile.objects.filter(pk=job.file_id).first()
        if media_file is None:
            logger.info(
                "Media file deleted while queued, discarding job",
                extra={"job_id": job.pk, "file_id": str(job.file_id), "queue": queue.name},
            )
            self._discard(job.dest_path)
            queue.ack(job)
        return media_file

    @staticmethod
    def _get_variation(media_file: MediaFile, name: str | None):
        if not name:
            return None
        variation = media_file.get_variation(name)
        if variation is None:
            raise TransformationFailure(
                f"Variation '{name}' is not declared for {media_file.to_detailed_string()}",
                details={"media_file_id": str(media_file.pk), "variation": name},
                permanent=True,
            )
        return variation

    @staticmethod
    def _backup_original(media_file: MediaFile) -> None:
        """Keep the untouched upload before the original is first replaced."""
        backup_path = media_file.get_backup_path()
        if os.path.exists(backup_path):
            return
        shutil.copy2(media_file.get_path(), backup_path)
        logger.debug(
            "Backed up original",
            extra={"media_file_id": str(media_file.pk), "path": backup_path},
        )

    @staticmethod
    def _discard(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    @staticmethod
    def _to_failure(job: "ProcessingJob", error: Exception) -> TransformationFailure:
        """Describe an exception raised by a job as a transformation failure."""
        if isinstance(error, TransformationFailure):
            failure = error
        elif isinstance(error, SoftTimeLimitExceeded):
            failure = TransformationFailure(
                f"{job.processor} exceeded the {job.phase} timeout",
                details={"job_id": job.pk},
            )
        else:
            failure = TransformationFailure(
                f"{type(error).__name__}: {error}",
                details={"job_id": job.pk},
                permanent=isinstance(error, (PermanentProcessingError, ConfigurationError)),
            )

        log_extra: dict[str, Any] = {
            "job_id": job.pk,
            "file_id": str(job.file_id),
            "processor": job.processor,
            "attempt": job.attempts,
            "permanent": failure.permanent,
        }
        if failure.permanent:
            logger.warning(f"Job failed permanently: {failure.message}", extra=log_extra)
        else:
            logger.warning(f"Job failed: {failure.message}", exc_info=error, extra=log_extra)
        return failure
