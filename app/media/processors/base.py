"""
Base module for media processors.

A processor is a stateless capability object that turns a file on disk into
a new or optimized file on disk. Creation processors derive a new variation
from the original or from another variation. Optimization processors
rewrite an existing file in place (or only read it, see modifies_file()).

Processors know nothing about queues. The processor manager decides which
processor handles a transition and the worker runs it.

Exception Hierarchy:
    ProcessingError (base)
    ├── PermanentProcessingError (don't retry - corrupted, unsupported)
    └── TransientProcessingError (retry - timeout, I/O, temporary failure)

Usage:
    class LogoProcessor(CreationProcessor):
        name = "logo.variation"

        def can_process(self, media_file, src_variation, dest_variation):
            return media_file.file_type == "logo"

        def get_order(self, variation=None):
            return 100

        def run(self, media_file, src_path, dest_path, src_variation, dest_variation):
            ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from media.models.processing_job import Phase

if TYPE_CHECKING:
    from media.models import MediaFile
    from media.variations import Variation


# =============================================================================
# Constants
# =============================================================================

# Subprocess timeouts in seconds. They are shorter than the phase timeout so
# that a hanging binary surfaces as a transient error the queue can retry.
VIDEO_PROBE_TIMEOUT = 60
VIDEO_SCREENSHOT_TIMEOUT = 120
VIDEO_TRANSCODE_TIMEOUT = 20 * 60

# Image encoding
JPEG_QUALITY = 85
PNG_COMPRESS_LEVEL = 9


# =============================================================================
# Exceptions
# =============================================================================


class ProcessingError(Exception):
    """
    Base exception for all media processing errors.

    This is the parent class for both permanent and transient errors.
    Catching this class will catch all processing-related exceptions.
    """

    pass


class PermanentProcessingError(ProcessingError):
    """
    Error that should not be retried.

    Raised when processing fails due to:
    - Corrupted or invalid file content
    - Unsupported file format/codec
    - Files exceeding size/complexity limits

    The worker dead-letters the job right away.

    Example:
        >>> if is_corrupted(file):
        ...     raise PermanentProcessingError("File is corrupted")
    """

    pass


class TransientProcessingError(ProcessingError):
    """
    Error that may succeed on retry.

    Raised when processing fails due to:
    - Timeout of an external binary
    - Temporary I/O errors (storage unavailable)
    - External binary missing on this worker (FFmpeg)

    The job follows the queue's retry policy.

    Example:
        >>> if timeout_exceeded:
        ...     raise TransientProcessingError("Processing timed out")
    """

    pass


# =============================================================================
# Processor Interface
# =============================================================================


class Processor(ABC):
    """
    Common base of creation and optimization processors.

    Attributes:
        name: Unique name within the processor's phase. Jobs reference
            processors by this name.
        phase: Phase the processor runs in.
    """

    name: str = ""
    phase: str = ""

    @abstractmethod
    def get_order(self, variation: "Variation | None" = None) -> int:
        """
        Scheduling priority of a job for the given variation.

        Lower values are processed first.
        """

    def modifies_file(self) -> bool:
        """Whether run() writes an output that replaces the file."""
        return True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"


class CreationProcessor(Processor):
    """Derives a new variation from the original or from another variation."""

    phase = Phase.CREATION

    @abstractmethod
    def can_process(
        self,
        media_file: "MediaFile",
        src_variation: "Variation | None",
        dest_variation: "Variation",
    ) -> bool:
        """
        Whether this processor derives dest_variation from src_variation.

        Args:
            media_file: File being processed.
            src_variation: Source variation, None for the original.
            dest_variation: Variation to create.
        """

    @abstractmethod
    def run(
        self,
        media_file: "MediaFile",
        src_path: str,
        dest_path: str,
        src_variation: "Variation | None",
        dest_variation: "Variation",
    ) -> dict[str, Any] | None:
        """
        Write dest_variation derived from src_path to dest_path.

        Returns:
            Optional facts about the output, e.g. {"width": .., "height": ..}.

        Raises:
            PermanentProcessingError: Input cannot be processed.
            TransientProcessingError: Retrying may help.
        """


class OptimizationProcessor(Processor):
    """Rewrites a variation or the original in place."""

    phase = Phase.OPTIMIZATION

    @abstractmethod
    def can_process(
        self,
        media_file: "MediaFile",
        variation: "Variation | None" = None,
    ) -> bool:
        """
        Whether this processor optimizes the variation.

        Args:
            media_file: File being processed.
            variation: Variation to optimize, None for the original.
        """

    @abstractmethod
    def run(
        self,
        media_file: "MediaFile",
        src_path: str,
        dest_path: str,
        variation: "Variation | None" = None,
    ) -> dict[str, Any] | None:
        """
        Write the optimized version of src_path to dest_path.

        Processors whose modifies_file() is False only read src_path and
        report their findings through the returned dict.

        Raises:
            PermanentProcessingError: Input cannot be processed.
            TransientProcessingError: Retrying may help.
        """
