"""
Image processors: resized variations and lossless re-encoding.

Uses Pillow for image manipulation with proper error handling for:
- Corrupted image files
- Unsupported formats
- Images exceeding size limits

Processors:
    ImageVariationProcessor: Derives resized/rotated image variations
    ImageOptimizationProcessor: Re-encodes images with optimized settings
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from PIL import Image

from media.categories import MimeCategory
from media.processors.base import (
    JPEG_QUALITY,
    PNG_COMPRESS_LEVEL,
    CreationProcessor,
    OptimizationProcessor,
    PermanentProcessingError,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from media.models import MediaFile
    from media.variations import Variation

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class ImageProcessingError(PermanentProcessingError):
    """
    Raised when image processing fails permanently.

    This exception indicates a non-recoverable error such as:
    - Corrupted image file
    - Unsupported image format
    - Image exceeds size limits
    """

    pass


# =============================================================================
# Helpers
# =============================================================================


@contextmanager
def _image_errors(media_file: "MediaFile", path: str) -> "Iterator[None]":
    """
    Translate Pillow errors into processing errors.

    Unreadable content is permanent. Other OSErrors (file not found,
    permission denied, ...) may be transient and propagate unchanged.
    """
    try:
        yield
    except Image.DecompressionBombError as e:
        logger.warning(
            "Image exceeds size limit",
            extra={"media_file_id": str(media_file.pk), "path": path, "error": str(e)},
        )
        raise ImageProcessingError(f"Image exceeds maximum size limit: {e}") from e

    except Image.UnidentifiedImageError as e:
        logger.warning(
            "Cannot identify image format",
            extra={"media_file_id": str(media_file.pk), "path": path, "error": str(e)},
        )
        raise ImageProcessingError(
            f"Cannot identify image format - file may be corrupted: {e}"
        ) from e

    except OSError as e:
        error_str = str(e).lower()
        if "truncated" in error_str or "cannot identify" in error_str:
            logger.warning(
                "Image file is truncated or corrupted",
                extra={"media_file_id": str(media_file.pk), "path": path, "error": str(e)},
            )
            raise ImageProcessingError(f"Image file is truncated or corrupted: {e}") from e

        logger.error(
            "I/O error during image processing",
            extra={"media_file_id": str(media_file.pk), "path": path, "error": str(e)},
        )
        raise


def _convert_to_rgb(img: Image.Image) -> Image.Image:
    """
    Convert image to RGB mode for JPEG output.

    Handles various color modes:
    - RGBA: Composites onto white background
    - LA (grayscale with alpha): Converts to RGBA then RGB
    - P (palette): Converts to RGBA if has transparency, else RGB
    - Other: Converts directly to RGB
    """
    if img.mode == "RGB":
        return img

    if img.mode in ("RGBA", "LA"):
        background = Image.new("RGB", img.size, (255, 255, 255))
        if img.mode == "LA":
            img = img.convert("RGBA")
        background.paste(img, mask=img.split()[-1])
        return background

    if img.mode == "P":
        if "transparency" in img.info:
            img = img.convert("RGBA")
            background = Image.new("RGB", img.size, (255, 255, 255))
            background.paste(img, mask=img.split()[-1])
            return background
        return img.convert("RGB")

    return img.convert("RGB")


def save_image(img: Image.Image, dest_path: str, mime_type: str) -> None:
    """Encode an image to dest_path in the format of the MIME type."""
    if mime_type == "image/jpeg":
        _convert_to_rgb(img).save(
            dest_path,
            format="JPEG",
            quality=JPEG_QUALITY,
            optimize=True,
            progressive=True,
        )
    elif mime_type == "image/png":
        img.save(dest_path, format="PNG", optimize=True, compress_level=PNG_COMPRESS_LEVEL)
    else:
        raise ImageProcessingError(f"Cannot encode images as {mime_type}")


# =============================================================================
# Processors
# =============================================================================


class ImageVariationProcessor(CreationProcessor):
    """
    Derives resized image variations from an image.

    The source is the original or, for variations declaring a source, a
    variation that is itself an image (e.g. the backglass extracted from a
    DirectB2S file, or a video still).
    """

    name = "image.variation"

    def can_process(self, media_file, src_variation, dest_variation) -> bool:
        return (
            media_file.get_category(src_variation) == MimeCategory.IMAGE
            and media_file.get_category(dest_variation) == MimeCategory.IMAGE
        )

    def get_order(self, variation: "Variation | None" = None) -> int:
        return 100 + (variation.priority if variation else 0)

    def run(self, media_file, src_path, dest_path, src_variation, dest_variation) -> dict[str, Any]:
        logger.info(
            "Creating image variation",
            extra={
                "media_file_id": str(media_file.pk),
                "variation": dest_variation.name,
                "source": src_variation.name if src_variation else None,
            },
        )
        with _image_errors(media_file, src_path):
            with Image.open(src_path) as img:
                # Force load to detect corrupt images early
                img.load()
                original_size = img.size

                if dest_variation.rotate:
                    # PIL rotates counter-clockwise
                    img = img.rotate(-dest_variation.rotate, expand=True)

                if dest_variation.width and dest_variation.height:
                    img.thumbnail(
                        (dest_variation.width, dest_variation.height),
                        Image.Resampling.LANCZOS,
                    )

                save_image(img, dest_path, media_file.get_mime_type(dest_variation))
                width, height = img.size

        logger.info(
            "Created image variation",
            extra={
                "media_file_id": str(media_file.pk),
                "variation": dest_variation.name,
                "original_size": f"{original_size[0]}x{original_size[1]}",
                "size": f"{width}x{height}",
            },
        )
        return {"width": width, "height": height}


class ImageOptimizationProcessor(OptimizationProcessor):
    """Re-encodes JPEG and PNG files with optimized encoder settings."""

    name = "image.optimize"

    def can_process(self, media_file, variation=None) -> bool:
        if variation is not None and not variation.optimizable:
            return False
        return media_file.get_category(variation) == MimeCategory.IMAGE

    def get_order(self, variation: "Variation | None" = None) -> int:
        # Variations are what users see first, the original comes last
        return 300 + (variation.priority if variation else 50)

    def run(self, media_file, src_path, dest_path, variation=None) -> dict[str, Any]:
        with _image_errors(media_file, src_path):
            with Image.open(src_path) as img:
                img.load()
                save_image(img, dest_path, media_file.get_mime_type(variation))
                width, height = img.size

        src_size = os.path.getsize(src_path)
        dest_size = os.path.getsize(dest_path)
        logger.info(
            "Optimized image",
            extra={
                "media_file_id": str(media_file.pk),
                "variation": variation.name if variation else None,
                "src_size": src_size,
                "dest_size": dest_size,
            },
        )
        return {"width": width, "height": height, "saved_bytes": src_size - dest_size}
