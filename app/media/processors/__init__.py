"""
Media processors package.

Provides the processors that create and optimize variations:
- Image processing (resized variations, re-encoding)
- Video processing (still frames, scaled clips, faststart remuxing)
- DirectB2S processing (backglass extraction, embedded image re-encoding)
- Table processing (block index of VPT/VPX files)

Each processor is responsible for:
1. Declaring which transitions it handles (can_process)
2. Reading the source path
3. Writing the output to the destination path
4. Raising the appropriate error on failure

Exception Hierarchy:
    ProcessingError (base)
    ├── PermanentProcessingError (don't retry)
    │   ├── ImageProcessingError
    │   ├── VideoProcessingError
    │   ├── Directb2sProcessingError
    │   └── TableProcessingError
    └── TransientProcessingError (retry)

Usage:
    from media.processors import default_creation_processors

    for processor in default_creation_processors():
        if processor.can_process(media_file, None, variation):
            ...
"""

from media.processors.base import (
    CreationProcessor,
    OptimizationProcessor,
    PermanentProcessingError,
    ProcessingError,
    Processor,
    TransientProcessingError,
)
from media.processors.directb2s import (
    Directb2sOptimizationProcessor,
    Directb2sProcessingError,
    Directb2sThumbProcessor,
)
from media.processors.image import (
    ImageOptimizationProcessor,
    ImageProcessingError,
    ImageVariationProcessor,
)
from media.processors.table import TableBlockIndexProcessor, TableProcessingError
from media.processors.video import (
    VideoOptimizationProcessor,
    VideoProcessingError,
    VideoScreenshotProcessor,
    VideoThumbProcessor,
)


def default_creation_processors() -> list[CreationProcessor]:
    """Return fresh instances of all shipped creation processors."""
    return [
        Directb2sThumbProcessor(),
        ImageVariationProcessor(),
        VideoScreenshotProcessor(),
        VideoThumbProcessor(),
    ]


def default_optimization_processors() -> list[OptimizationProcessor]:
    """Return fresh instances of all shipped optimization processors."""
    return [
        Directb2sOptimizationProcessor(),
        ImageOptimizationProcessor(),
        TableBlockIndexProcessor(),
        VideoOptimizationProcessor(),
    ]


__all__ = [
    # Base classes and exceptions
    "Processor",
    "CreationProcessor",
    "OptimizationProcessor",
    "ProcessingError",
    "PermanentProcessingError",
    "TransientProcessingError",
    # Image processing
    "ImageProcessingError",
    "ImageVariationProcessor",
    "ImageOptimizationProcessor",
    # Video processing
    "VideoProcessingError",
    "VideoScreenshotProcessor",
    "VideoThumbProcessor",
    "VideoOptimizationProcessor",
    # DirectB2S processing
    "Directb2sProcessingError",
    "Directb2sThumbProcessor",
    "Directb2sOptimizationProcessor",
    # Table processing
    "TableProcessingError",
    "TableBlockIndexProcessor",
    # Defaults
    "default_creation_processors",
    "default_optimization_processors",
]
