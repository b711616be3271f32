"""
Exceptions raised by the media processing pipeline.

Exception Hierarchy:
    BaseApplicationError
    ├── ConfigurationError
    │   ├── UnknownMimeType - MIME type has no processing category
    │   ├── UnknownFileType - asset kind has no variation catalog
    │   ├── UnknownProcessor - job names a processor that is not registered
    │   └── AmbiguousProcessor - more than one creation processor matches
    ├── NotFoundError
    │   ├── UnresolvedProcessor - no creation processor matches (non-fatal)
    │   └── NoCreationJob - waited for a variation nothing is creating
    ├── ConflictError
    │   └── DestinationBusy - a live creation job already owns the dest path
    ├── ExternalServiceError
    │   └── QueueUnavailable - job store unreachable on push
    └── TransformationFailure - processor execution failed or timed out

Configuration errors are deployment defects. They are never retried and
abort the enqueue that triggered them. TransformationFailure is what the
worker records against a job; it drives the retry policy of the queue.

Processor implementations raise the lower level errors from
media.processors.base (PermanentProcessingError, TransientProcessingError).
"""

from __future__ import annotations

from core.exceptions import (
    BaseApplicationError,
    ConfigurationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
)


class UnknownMimeType(ConfigurationError):
    """Raised when a MIME type is not registered in the category taxonomy."""

    default_error_code: str = "UNKNOWN_MIME_TYPE"


class UnknownFileType(ConfigurationError):
    """Raised when an asset kind is not registered in the variation catalog."""

    default_error_code: str = "UNKNOWN_FILE_TYPE"


class UnknownProcessor(ConfigurationError):
    """Raised when looking up a processor by a name that is not registered."""

    default_error_code: str = "UNKNOWN_PROCESSOR"


class AmbiguousProcessor(ConfigurationError):
    """
    Raised when more than one creation processor claims a transition.

    Two processors writing the same destination path would corrupt it, so
    the enqueue is refused.
    """

    default_error_code: str = "AMBIGUOUS_PROCESSOR"


class UnresolvedProcessor(NotFoundError):
    """
    Raised when no creation processor can produce a variation.

    Callers log this and skip the variation. It is left unmaterialized and
    dependents treat it as absent, not failed.
    """

    default_error_code: str = "UNRESOLVED_PROCESSOR"


class NoCreationJob(NotFoundError):
    """Raised when waiting for a variation that no creation job is producing."""

    default_error_code: str = "NO_CREATION_JOB"


class DestinationBusy(ConflictError):
    """Raised when a waiting or active creation job already targets a path."""

    default_error_code: str = "DESTINATION_BUSY"


class QueueUnavailable(ExternalServiceError):
    """Raised when a job cannot be persisted because the store is unreachable."""

    default_error_code: str = "QUEUE_UNAVAILABLE"


class TransformationFailure(BaseApplicationError):
    """
    A processor execution raised or exceeded the phase timeout.

    Attributes:
        permanent: True if retrying cannot help (corrupt input, unsupported
            format). The job is dead-lettered without further attempts.
    """

    default_error_code: str = "TRANSFORMATION_FAILURE"

    def __init__(self, message, error_code=None, details=None, permanent=False):
        super().__init__(message, error_code=error_code, details=details)
        self.permanent = permanent
