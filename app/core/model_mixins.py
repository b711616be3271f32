"""
Abstract field mixins shared by the models.

    UUIDPrimaryKeyMixin: random UUID primary key, known before insert
    MetadataMixin: JSON dict for results reported by processors

List mixins before BaseModel in the bases:

    class MediaFile(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
        ...
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db import models

if TYPE_CHECKING:
    from typing import Any


class UUIDPrimaryKeyMixin(models.Model):
    """
    UUID primary key generated in Python.

    Storage paths are derived from the id, so it has to exist before the
    row is saved.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Record identifier, also used in storage paths",
    )

    class Meta:
        abstract = True


class MetadataMixin(models.Model):
    """
    Free-form JSON storage keyed by producer.

    Processors store their results under their own name:

        media_file.set_meta("table.blockindex", {"counts": {"image": 12}})
        media_file.get_meta("table.blockindex", default={})
    """

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Results reported by processors, keyed by processor name",
    )

    class Meta:
        abstract = True

    def get_meta(self, key: str, default: Any = None) -> Any:
        return self.metadata.get(key, default)

    def set_meta(self, key: str, value: Any, save: bool = True) -> None:
        """Store a JSON-serializable value under key, saving unless told not to."""
        self.metadata[key] = value
        if save:
            self.save(update_fields=["metadata", "updated_at"])
