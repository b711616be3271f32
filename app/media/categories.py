"""
MIME type taxonomy for the processing pipeline.

Every MIME type the pipeline accepts belongs to exactly one processing
category. The category decides which job queue a job lands on, so that a
slow video transcode never holds up image thumbnails.

Usage:
    from media.categories import MimeCategory, category_of

    category_of("image/png")              # MimeCategory.IMAGE
    category_of("application/x-directb2s")  # MimeCategory.DIRECTB2S
    category_of("application/pdf")       # raises UnknownMimeType
"""

from __future__ import annotations

from dataclasses import dataclass

from django.db import models

from media.exceptions import UnknownMimeType


class MimeCategory(models.TextChoices):
    """Coarse processing classes derived from a MIME type."""

    IMAGE = "image", "Image"
    VIDEO = "video", "Video"
    AUDIO = "audio", "Audio"
    TEXT = "text", "Text"
    ARCHIVE = "archive", "Archive"
    TABLE = "table", "Table"
    DIRECTB2S = "directb2s", "DirectB2S Backglass"


@dataclass(frozen=True)
class MimeType:
    """A registered MIME type with its category and storage extension."""

    name: str
    category: MimeCategory
    extension: str


# =============================================================================
# Registry
# =============================================================================

MIME_TYPES: dict[str, MimeType] = {
    mime.name: mime
    for mime in (
        MimeType("image/jpeg", MimeCategory.IMAGE, "jpg"),
        MimeType("image/png", MimeCategory.IMAGE, "png"),
        MimeType("video/mp4", MimeCategory.VIDEO, "mp4"),
        MimeType("video/x-flv", MimeCategory.VIDEO, "flv"),
        MimeType("video/avi", MimeCategory.VIDEO, "avi"),
        MimeType("video/x-f4v", MimeCategory.VIDEO, "f4v"),
        MimeType("audio/mpeg", MimeCategory.AUDIO, "mp3"),
        MimeType("audio/mp3", MimeCategory.AUDIO, "mp3"),
        MimeType("text/plain", MimeCategory.TEXT, "txt"),
        MimeType("application/vbscript", MimeCategory.TEXT, "vbs"),
        MimeType("application/zip", MimeCategory.ARCHIVE, "zip"),
        MimeType("application/x-zip-compressed", MimeCategory.ARCHIVE, "zip"),
        MimeType("application/rar", MimeCategory.ARCHIVE, "rar"),
        MimeType("application/x-rar-compressed", MimeCategory.ARCHIVE, "rar"),
        MimeType("application/x-visual-pinball-table", MimeCategory.TABLE, "vpt"),
        MimeType("application/x-visual-pinball-table-x", MimeCategory.TABLE, "vpx"),
        MimeType("application/x-directb2s", MimeCategory.DIRECTB2S, "directb2s"),
    )
}


def get_mime_type(mime_type: str) -> MimeType:
    """
    Look up a registered MIME type.

    Raises:
        UnknownMimeType: If the MIME type is not registered.
    """
    try:
        return MIME_TYPES[mime_type]
    except KeyError:
        raise UnknownMimeType(
            f"No processing category registered for MIME type '{mime_type}'",
            details={"mime_type": mime_type},
        ) from None


def category_of(mime_type: str) -> MimeCategory:
    """
    Map a MIME type to its processing category.

    Args:
        mime_type: MIME type string, e.g. "image/png".

    Returns:
        The MimeCategory of the MIME type.

    Raises:
        UnknownMimeType: If the MIME type is not registered.
    """
    return get_mime_type(mime_type).category


def extension_for(mime_type: str) -> str:
    """Return the file extension (without dot) used to store a MIME type."""
    return get_mime_type(mime_type).extension
