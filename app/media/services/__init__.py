"""Media services for pipeline coordination."""

from media.services.processing import ProcessingService

__all__ = [
    "ProcessingService",
]
