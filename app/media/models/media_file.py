"""
MediaFile model for storing uploaded pinball media.

Provides:
- UUID primary key, also used as the storage directory name
- Asset kind (backglass, playfield, ...) deciding the required variations
- Processing status maintained by the pipeline
- Path helpers for the original and every variation

Storage layout (relative to MEDIA_ROOT):
    {file_type}/{uuid}/original.{ext}
    {file_type}/{uuid}/{variation}.{ext}
    {file_type}/{uuid}/{variation}_{processor}.processing.{ext}  (in flight)
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models

from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel
from media.categories import MimeCategory, category_of, extension_for
from media.variations import (
    FileType,
    Variation,
    is_accepted,
    variation_category,
    variations_for,
)

if TYPE_CHECKING:
    from django.core.files.uploadedfile import UploadedFile


ORIGINAL_NAME = "original"

# Suffix of the untouched upload kept aside before the original is
# optimized in place. Reprocessing starts from it when present.
BACKUP_SUFFIX = "_backup"


def media_upload_path(instance: "MediaFile", filename: str) -> str:
    """
    Generate upload path for media files.

    Pattern: file_type/uuid/original.ext

    The extension is derived from the MIME type, not from the uploaded
    filename, so variations and the original share one naming scheme.
    """
    return f"{instance.file_type}/{instance.pk}/{ORIGINAL_NAME}.{extension_for(instance.mime_type)}"


class MediaFile(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
    """
    An uploaded file and the entry point of the processing pipeline.

    Attributes:
        file: The uploaded original.
        original_filename: The original name of the uploaded file.
        file_type: Kind of asset, decides the variation catalog.
        mime_type: MIME type of the original.
        file_size: Size of the original in bytes.

    Processing Fields (maintained by the pipeline):
        processing_status: Overall pipeline state of the file.
        processing_error: Last error reported for a dead-lettered job.
        processing_started_at: When the first job was enqueued.
        processing_completed_at: When the last job finished.
        optimized_at: When the original was last optimized in place.
    """

    # =========================================================================
    # Enums
    # =========================================================================

    class ProcessingStatus(models.TextChoices):
        """Processing pipeline status."""

        PENDING = "pending", "Pending"
        PROCESSING = "processing", "Processing"
        READY = "ready", "Ready"
        DEGRADED = "degraded", "Degraded"

    # =========================================================================
    # Core Fields
    # =========================================================================

    file = models.FileField(
        upload_to=media_upload_path,
        max_length=255,
        help_text="The uploaded media file",
    )

    original_filename = models.CharField(
        max_length=255,
        help_text="Original filename from the upload",
    )

    file_type = models.CharField(
        max_length=20,
        choices=FileType.choices,
        db_index=True,
        help_text="Kind of asset (backglass, playfield, release, ...)",
    )

    mime_type = models.CharField(
        max_length=127,
        help_text="MIME type of the original (e.g., image/png, video/mp4)",
    )

    file_size = models.BigIntegerField(
        help_text="File size in bytes",
    )

    # =========================================================================
    # Processing Fields
    # =========================================================================

    processing_status = models.CharField(
        max_length=20,
        choices=ProcessingStatus.choices,
        default=ProcessingStatus.PENDING,
        db_index=True,
        help_text="Current processing pipeline status",
    )

    processing_error = models.TextField(
        blank=True,
        null=True,
        help_text="Error of the last dead-lettered job, if any",
    )

    processing_started_at = models.DateTimeField(
        blank=True,
        null=True,
        help_text="When processing started",
    )

    processing_completed_at = models.DateTimeField(
        blank=True,
        null=True,
        help_text="When the last processing job finished",
    )

    optimized_at = models.DateTimeField(
        blank=True,
        null=True,
        help_text="When the original was last optimized",
    )

    # =========================================================================
    # Meta
    # =========================================================================

    class Meta:
        """Model metadata."""

        verbose_name = "Media File"
        verbose_name_plural = "Media Files"
        ordering = ["-created_at"]

        indexes = [
            models.Index(
                fields=["file_type", "created_at"],
                name="idx_media_file_type_created",
            ),
        ]

        constraints = [
            models.CheckConstraint(
                condition=models.Q(file_size__gt=0),
                name="media_file_size_positive",
            ),
        ]

    # =========================================================================
    # Methods
    # =========================================================================

    def __str__(self) -> str:
        return f"{self.original_filename} ({self.file_type})"

    @classmethod
    def create_from_upload(
        cls,
        file: "UploadedFile",
        file_type: str,
        mime_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> "MediaFile":
        """
        Factory method to create a MediaFile from an uploaded file.

        Args:
            file: The uploaded file object.
            file_type: Kind of asset.
            mime_type: MIME type of the upload.
            metadata: Optional metadata dict.

        Returns:
            Created and saved MediaFile instance.

        Raises:
            UnknownMimeType: If the MIME type has no processing category.
            ValidationError: If the asset kind does not accept the MIME type.
        """
        category_of(mime_type)
        if not is_accepted(file_type, mime_type):
            raise ValidationError(
                f"File type '{file_type}' does not accept MIME type '{mime_type}'."
            )

        media_file = cls(
            file=file,
            original_filename=file.name,
            file_type=file_type,
            mime_type=mime_type,
            file_size=file.size,
        )
        if metadata:
            media_file.metadata = metadata

        media_file.save()
        return media_file

    # =========================================================================
    # Variations
    # =========================================================================

    @property
    def category(self) -> MimeCategory:
        """Processing category of the original."""
        return category_of(self.mime_type)

    def get_variations(self) -> tuple[Variation, ...]:
        """Return the variations declared for this file's kind and MIME type."""
        return variations_for(self.file_type, self.mime_type)

    def get_variation(self, name: str | None) -> Variation | None:
        """
        Look up a declared variation by name.

        Returns None for a None name (the original) or an undeclared name.
        """
        if name is None:
            return None
        for variation in self.get_variations():
            if variation.name == name:
                return variation
        return None

    def get_dependent_variations(self, variation: Variation) -> list[Variation]:
        """Return the variations derived from the given one."""
        return [v for v in self.get_variations() if v.source == variation.name]

    def get_mime_type(self, variation: Variation | None = None) -> str:
        """MIME type of a variation, or of the original if none given."""
        if variation is not None and variation.mime_type:
            return variation.mime_type
        return self.mime_type

    def get_category(self, variation: Variation | None = None) -> MimeCategory:
        """Processing category of a variation, or of the original."""
        return variation_category(variation, self.mime_type)

    # =========================================================================
    # Paths
    # =========================================================================

    def get_relative_path(self, variation: Variation | None = None) -> str:
        """Storage path of a variation or the original, relative to MEDIA_ROOT."""
        if variation is None and self.file:
            return self.file.name
        name = variation.name if variation is not None else ORIGINAL_NAME
        extension = extension_for(self.get_mime_type(variation))
        return f"{self.file_type}/{self.pk}/{name}.{extension}"

    def get_path(self, variation: Variation | None = None, tmp_suffix: str = "") -> str:
        """
        Absolute path of a variation or the original on disk.

        Args:
            variation: Variation, None for the original.
            tmp_suffix: Inserted between file name and extension, used for
                in-flight outputs, e.g. "_image.variation.processing".

        Returns:
            Absolute path as string.
        """
        path = Path(settings.MEDIA_ROOT) / self.get_relative_path(variation)
        if tmp_suffix:
            path = path.with_name(f"{path.stem}{tmp_suffix}{path.suffix}")
        return str(path)

    def get_backup_path(self) -> str:
        """Path of the untouched copy of the original."""
        return self.get_path(None, tmp_suffix=BACKUP_SUFFIX)

    def to_detailed_string(self, variation: Variation | None = None) -> str:
        """Human-readable identifier used in log messages."""
        name = variation.name if variation is not None else ORIGINAL_NAME
        return f"{self.file_type} {self.pk}@{name} ({self.get_mime_type(variation)})"

    def is_materialized(self, variation: Variation) -> bool:
        """Whether the creation job for a variation has succeeded."""
        return self.assets.filter(variation=variation.name).exists()
