"""Django app configuration for media app."""

from django.apps import AppConfig


class MediaConfig(AppConfig):
    """Configuration for the media app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "media"
    verbose_name = "Media"

    def ready(self) -> None:
        """Build the processing pipeline and connect signal handlers."""
        from media.pipeline import build_pipeline, connect_sequencing
        from media.signals import connect_signals

        self.pipeline = build_pipeline()

        # Sequencing first, see media.pipeline
        connect_sequencing()
        connect_signals()
