"""
Variation catalog.

Declares, per asset kind, which derived variations must exist for an upload.
Variations are static: they are never persisted individually. Whether a
variation has been materialized is recorded by MediaAsset rows once its
creation job succeeded.

A variation without a source is derived from the original upload. A
variation with a source is derived from another variation of the same file
and can only be created after its source exists, e.g. the thumbnails of a
DirectB2S backglass are computed from the image extracted from it.

Usage:
    from media.variations import FileType, variations_for

    variations_for(FileType.BACKGLASS, "image/png")
    # (Variation(name="medium", ...), Variation(name="medium-2x", ...), ...)
"""

from __future__ import annotations

from dataclasses import dataclass

from django.db import models

from media.categories import MimeCategory, category_of
from media.exceptions import UnknownFileType


class FileType(models.TextChoices):
    """Kinds of uploads. The kind decides which variations are needed."""

    BACKGLASS = "backglass", "Backglass"
    LOGO = "logo", "Logo"
    PLAYFIELD = "playfield", "Playfield"
    PLAYFIELD_FS = "playfield-fs", "Playfield (Portrait)"
    PLAYFIELD_WS = "playfield-ws", "Playfield (Landscape)"
    LANDSCAPE = "landscape", "Landscape"
    RELEASE = "release", "Release File"
    ROM = "rom", "ROM"


@dataclass(frozen=True)
class Variation:
    """
    A named derived form of an upload.

    Attributes:
        name: Unique name within the file's catalog, e.g. "medium-2x".
        mime_type: Target MIME type, None if the same as the original.
        source: Name of the variation this one is derived from, None if it
            is derived from the original.
        width: Target bounding box width in pixels, if any.
        height: Target bounding box height in pixels, if any.
        rotate: Clockwise rotation applied while deriving, in degrees.
        priority: Relative ordering among variations of the same processor.
            Lower values are produced first.
        optimizable: Whether optimization processors should run on the
            variation once it exists.
    """

    name: str
    mime_type: str | None = None
    source: str | None = None
    width: int | None = None
    height: int | None = None
    rotate: int = 0
    priority: int = 0
    optimizable: bool = True


# =============================================================================
# Accepted MIME types per asset kind
# =============================================================================

_IMAGES = ("image/jpeg", "image/png")
_VIDEOS = ("video/mp4", "video/x-flv", "video/avi", "video/x-f4v")

ACCEPTED_MIME_TYPES: dict[str, tuple[str, ...]] = {
    FileType.BACKGLASS: (*_IMAGES, "application/x-directb2s"),
    FileType.LOGO: ("image/png",),
    FileType.PLAYFIELD: _IMAGES,
    FileType.PLAYFIELD_FS: (*_IMAGES, *_VIDEOS),
    FileType.PLAYFIELD_WS: (*_IMAGES, *_VIDEOS),
    FileType.LANDSCAPE: _IMAGES,
    FileType.RELEASE: (
        "application/x-visual-pinball-table",
        "application/x-visual-pinball-table-x",
        "text/plain",
        "application/vbscript",
        "audio/mpeg",
        "audio/mp3",
        "application/zip",
        "application/rar",
        "application/x-rar-compressed",
        "application/x-zip-compressed",
    ),
    FileType.ROM: ("application/zip", "application/x-zip-compressed"),
}


# =============================================================================
# Catalog
# =============================================================================

_BACKGLASS_IMAGE = (
    Variation("small", width=253, height=202, priority=0),
    Variation("small-2x", width=506, height=404, priority=1),
    Variation("medium", width=364, height=291, priority=2),
    Variation("medium-2x", width=728, height=582, priority=3),
)

_PLAYFIELD_IMAGE = (
    Variation("square", width=120, height=120, priority=0),
    Variation("square-2x", width=240, height=240, priority=1),
    Variation("medium", width=280, height=498, priority=2),
    Variation("medium-2x", width=560, height=996, priority=3),
)

_PLAYFIELD_VIDEO = (
    Variation("still", mime_type="image/png", priority=0),
    Variation("still-medium", mime_type="image/png", source="still", width=280, height=498),
    Variation("small-rotated", mime_type="video/mp4", width=394, height=234, rotate=90),
)

CATALOG: dict[str, dict[MimeCategory, tuple[Variation, ...]]] = {
    FileType.BACKGLASS: {
        MimeCategory.IMAGE: _BACKGLASS_IMAGE,
        MimeCategory.DIRECTB2S: (
            Variation("full", mime_type="image/jpeg"),
            Variation("small", mime_type="image/jpeg", source="full", width=253, height=202),
            Variation("medium", mime_type="image/jpeg", source="full", width=364, height=291),
        ),
    },
    FileType.LOGO: {
        MimeCategory.IMAGE: (
            Variation("medium", width=300, height=150, priority=0),
            Variation("medium-2x", width=600, height=300, priority=1),
        ),
    },
    FileType.PLAYFIELD: {
        MimeCategory.IMAGE: _PLAYFIELD_IMAGE,
    },
    FileType.PLAYFIELD_FS: {
        MimeCategory.IMAGE: _PLAYFIELD_IMAGE,
        MimeCategory.VIDEO: _PLAYFIELD_VIDEO,
    },
    FileType.PLAYFIELD_WS: {
        MimeCategory.IMAGE: _PLAYFIELD_IMAGE,
        MimeCategory.VIDEO: _PLAYFIELD_VIDEO,
    },
    FileType.LANDSCAPE: {
        MimeCategory.IMAGE: (
            Variation("small", width=253, height=142, priority=0),
            Variation("medium", width=728, height=409, priority=1),
        ),
    },
    FileType.RELEASE: {},
    FileType.ROM: {},
}


def variations_for(file_type: str, mime_type: str) -> tuple[Variation, ...]:
    """
    Return the variations an upload of the given kind needs.

    The result only depends on its arguments, and the tuple order is the
    declaration order of the catalog.

    Args:
        file_type: Asset kind, one of FileType.
        mime_type: MIME type of the original upload.

    Returns:
        Tuple of variations, empty if the kind has no derivatives for the
        category of the MIME type.

    Raises:
        UnknownFileType: If the asset kind is not registered.
        UnknownMimeType: If the MIME type has no category.
    """
    try:
        by_category = CATALOG[file_type]
    except KeyError:
        raise UnknownFileType(
            f"No variation catalog for file type '{file_type}'",
            details={"file_type": file_type},
        ) from None
    return by_category.get(category_of(mime_type), ())


def variation_category(variation: Variation | None, original_mime_type: str) -> MimeCategory:
    """Category of a variation; variations without own MIME type inherit it."""
    if variation is not None and variation.mime_type:
        return category_of(variation.mime_type)
    return category_of(original_mime_type)


def is_accepted(file_type: str, mime_type: str) -> bool:
    """Check whether uploads of a kind may have the given MIME type."""
    return mime_type in ACCEPTED_MIME_TYPES.get(file_type, ())


def file_types_for(mime_type: str) -> list[str]:
    """Return the asset kinds that accept a MIME type."""
    return [
        file_type
        for file_type, mime_types in ACCEPTED_MIME_TYPES.items()
        if mime_type in mime_types
    ]


def iter_catalog():
    """
    Yield every declared (file type, original MIME type, variation) triple.

    Used to check at startup that every catalog entry resolves to exactly
    one creation processor.
    """
    for file_type, mime_types in ACCEPTED_MIME_TYPES.items():
        for mime_type in mime_types:
            for variation in variations_for(file_type, mime_type):
                yield file_type, mime_type, variation
