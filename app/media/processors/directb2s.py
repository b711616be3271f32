"""
DirectB2S processors.

A DirectB2S file is an XML document describing a B2S backglass. Its images
are embedded as base64 encoded attributes:

    <DirectB2SData>
      <Images>
        <ThumbnailImage Value="iVBORw0..." />
        <BackglassImage Value="iVBORw0..." />
      </Images>
      <Illumination>
        <Bulb ... Image="iVBORw0..." />
      </Illumination>
    </DirectB2SData>

Processors:
    Directb2sThumbProcessor: Extracts the backglass image
    Directb2sOptimizationProcessor: Re-encodes the embedded images
"""

from __future__ import annotations

import base64
import binascii
import logging
import xml.etree.ElementTree as ET
from io import BytesIO
from typing import TYPE_CHECKING, Any

from PIL import Image

from media.categories import MimeCategory
from media.processors.base import (
    PNG_COMPRESS_LEVEL,
    CreationProcessor,
    OptimizationProcessor,
    PermanentProcessingError,
)
from media.processors.image import save_image

if TYPE_CHECKING:
    from media.variations import Variation

logger = logging.getLogger(__name__)

# Element and attribute names holding embedded images
IMAGE_ATTRIBUTES = {
    "BackglassImage": "Value",
    "BackglassOnImage": "Value",
    "BackglassOffImage": "Value",
    "DMDImage": "Value",
    "ThumbnailImage": "Value",
    "Bulb": "Image",
    "OffImage": "Value",
}


class Directb2sProcessingError(PermanentProcessingError):
    """Raised when a DirectB2S file cannot be parsed."""

    pass


def _parse(path: str) -> ET.ElementTree:
    try:
        return ET.parse(path)
    except ET.ParseError as e:
        raise Directb2sProcessingError(f"Invalid DirectB2S document: {e}") from e


def _decode(data: str) -> bytes:
    try:
        return base64.b64decode(data, validate=False)
    except (binascii.Error, ValueError) as e:
        raise Directb2sProcessingError(f"Invalid embedded image data: {e}") from e


class Directb2sThumbProcessor(CreationProcessor):
    """Extracts the backglass image of a DirectB2S file as a plain image."""

    name = "directb2s.thumb"

    def can_process(self, media_file, src_variation, dest_variation) -> bool:
        return (
            src_variation is None
            and media_file.get_category() == MimeCategory.DIRECTB2S
            and media_file.get_category(dest_variation) == MimeCategory.IMAGE
        )

    def get_order(self, variation: "Variation | None" = None) -> int:
        # The extracted image is the source of all other backglass variations
        return 50

    def run(self, media_file, src_path, dest_path, src_variation, dest_variation) -> dict[str, Any]:
        tree = _parse(src_path)
        element = tree.getroot().find(".//Images/BackglassImage")
        if element is None or not element.get("Value"):
            logger.warning(
                "DirectB2S file has no backglass image",
                extra={"media_file_id": str(media_file.pk)},
            )
            raise Directb2sProcessingError("No backglass image found in DirectB2S file")

        try:
            with Image.open(BytesIO(_decode(element.get("Value")))) as img:
                img.load()
                if dest_variation.width and dest_variation.height:
                    img.thumbnail(
                        (dest_variation.width, dest_variation.height),
                        Image.Resampling.LANCZOS,
                    )
                save_image(img, dest_path, media_file.get_mime_type(dest_variation))
                width, height = img.size
        except (Image.UnidentifiedImageError, Image.DecompressionBombError) as e:
            raise Directb2sProcessingError(f"Invalid backglass image: {e}") from e

        logger.info(
            "Extracted backglass from DirectB2S file",
            extra={
                "media_file_id": str(media_file.pk),
                "variation": dest_variation.name,
                "size": f"{width}x{height}",
            },
        )
        return {"width": width, "height": height}


class Directb2sOptimizationProcessor(OptimizationProcessor):
    """
    Re-encodes the PNG images embedded in a DirectB2S file.

    An image is only replaced when the re-encoded version is smaller.
    Images Pillow cannot read are left untouched.
    """

    name = "directb2s.optimize"

    def can_process(self, media_file, variation=None) -> bool:
        return variation is None and media_file.get_category() == MimeCategory.DIRECTB2S

    def get_order(self, variation: "Variation | None" = None) -> int:
        return 600

    def run(self, media_file, src_path, dest_path, variation=None) -> dict[str, Any]:
        tree = _parse(src_path)
        images = 0
        optimized = 0
        saved_bytes = 0

        for element in tree.iter():
            attribute = IMAGE_ATTRIBUTES.get(element.tag)
            data = element.get(attribute) if attribute else None
            if not data:
                continue
            images += 1

            original = _decode(data)
            encoded = self._reencode(original)
            if encoded is None or len(encoded) >= len(original):
                continue

            element.set(attribute, base64.b64encode(encoded).decode("ascii"))
            optimized += 1
            saved_bytes += len(original) - len(encoded)

        tree.write(dest_path, encoding="utf-8", xml_declaration=True)

        logger.info(
            "Optimized DirectB2S images",
            extra={
                "media_file_id": str(media_file.pk),
                "images": images,
                "optimized": optimized,
                "saved_bytes": saved_bytes,
            },
        )
        return {"images": images, "optimized": optimized, "saved_bytes": saved_bytes}

    @staticmethod
    def _reencode(data: bytes) -> bytes | None:
        try:
            with Image.open(BytesIO(data)) as img:
                if img.format != "PNG":
                    return None
                img.load()
                buffer = BytesIO()
                img.save(buffer, format="PNG", optimize=True, compress_level=PNG_COMPRESS_LEVEL)
                return buffer.getvalue()
        except (Image.UnidentifiedImageError, Image.DecompressionBombError, OSError):
            return None
