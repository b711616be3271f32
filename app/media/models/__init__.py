"""
Media models package.

Exports:
    MediaFile: Uploaded original, entry point of the processing pipeline
    MediaAsset: Materialized variation of a media file
    ProcessingJob: Durable job row behind the pipeline's queues
    Phase: Pipeline phases (creation, optimization)
    JobState: Lifecycle states of a job
"""

from media.models.media_asset import MediaAsset
from media.models.media_file import MediaFile
from media.models.processing_job import JobState, Phase, ProcessingJob

__all__ = [
    "JobState",
    "MediaAsset",
    "MediaFile",
    "Phase",
    "ProcessingJob",
]
