"""
MediaAsset model recording materialized variations of a media file.

A row exists once the creation job of a variation has succeeded. Rows are
written by the pipeline's notification receivers, never by processors.
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class MediaAsset(UUIDPrimaryKeyMixin, BaseModel):
    """
    A materialized variation of a media file.

    Each MediaFile has at most one asset per variation name. The file lives
    next to the original, see MediaFile.get_relative_path().

    Attributes:
        media_file: Parent MediaFile this asset belongs to.
        variation: Name of the variation in the file's catalog.
        file: The generated file.
        width: Width in pixels (for images/videos).
        height: Height in pixels (for images/videos).
        file_size: Size of the asset file in bytes.
        optimized_by: Names of the optimization processors that ran on it.
        optimized_at: When the last optimization finished.

    Example:
        >>> asset = media_file.assets.get(variation="medium")
        >>> asset.is_optimized
        True
    """

    media_file = models.ForeignKey(
        "media.MediaFile",
        on_delete=models.CASCADE,
        related_name="assets",
        help_text="Parent media file this asset belongs to",
    )

    variation = models.CharField(
        max_length=50,
        help_text="Name of the materialized variation",
    )

    file = models.FileField(
        max_length=255,
        help_text="The generated variation file",
    )

    width = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Width in pixels (for images/videos)",
    )

    height = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Height in pixels (for images/videos)",
    )

    file_size = models.BigIntegerField(
        default=0,
        help_text="Size of the asset file in bytes",
    )

    optimized_by = models.JSONField(
        default=list,
        blank=True,
        help_text="Optimization processors applied to this variation",
    )

    optimized_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the variation was last optimized",
    )

    class Meta:
        """Model metadata."""

        verbose_name = "Media Asset"
        verbose_name_plural = "Media Assets"
        ordering = ["variation", "-created_at"]

        constraints = [
            models.UniqueConstraint(
                fields=["media_file", "variation"],
                name="unique_variation_per_media_file",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.variation} for {self.media_file_id}"

    @property
    def is_optimized(self) -> bool:
        return self.optimized_at is not None

    @property
    def dimensions(self) -> str | None:
        """
        Return dimensions as a formatted string.

        Returns:
            String like "200x150" or None if dimensions not set.
        """
        if self.width and self.height:
            return f"{self.width}x{self.height}"
        return None
