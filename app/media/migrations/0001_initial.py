import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.db import migrations, models

import media.models.media_file


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="MediaFile",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Record identifier, also used in storage paths",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Results reported by processors, keyed by processor name",
                    ),
                ),
                (
                    "file",
                    models.FileField(
                        help_text="The uploaded media file",
                        max_length=255,
                        upload_to=media.models.media_file.media_upload_path,
                    ),
                ),
                (
                    "original_filename",
                    models.CharField(
                        help_text="Original filename from the upload",
                        max_length=255,
                    ),
                ),
                (
                    "file_type",
                    models.CharField(
                        choices=[
                            ("backglass", "Backglass"),
                            ("logo", "Logo"),
                            ("playfield", "Playfield"),
                            ("playfield-fs", "Playfield (Portrait)"),
                            ("playfield-ws", "Playfield (Landscape)"),
                            ("landscape", "Landscape"),
                            ("release", "Release File"),
                            ("rom", "ROM"),
                        ],
                        db_index=True,
                        help_text="Kind of asset (backglass, playfield, release, ...)",
                        max_length=20,
                    ),
                ),
                (
                    "mime_type",
                    models.CharField(
                        help_text="MIME type of the original (e.g., image/png, video/mp4)",
                        max_length=127,
                    ),
                ),
                ("file_size", models.BigIntegerField(help_text="File size in bytes")),
                (
                    "processing_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("ready", "Ready"),
                            ("degraded", "Degraded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current processing pipeline status",
                        max_length=20,
                    ),
                ),
                (
                    "processing_error",
                    models.TextField(
                        blank=True,
                        help_text="Error of the last dead-lettered job, if any",
                        null=True,
                    ),
                ),
                (
                    "processing_started_at",
                    models.DateTimeField(
                        blank=True, help_text="When processing started", null=True
                    ),
                ),
                (
                    "processing_completed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the last processing job finished",
                        null=True,
                    ),
                ),
                (
                    "optimized_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the original was last optimized",
                        null=True,
                    ),
                ),
            ],
            options={
                "verbose_name": "Media File",
                "verbose_name_plural": "Media Files",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["file_type", "created_at"],
                        name="idx_media_file_type_created",
                    )
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("file_size__gt", 0)),
                        name="media_file_size_positive",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="MediaAsset",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Record identifier, also used in storage paths",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "variation",
                    models.CharField(
                        help_text="Name of the materialized variation", max_length=50
                    ),
                ),
                (
                    "file",
                    models.FileField(
                        help_text="The generated variation file",
                        max_length=255,
                        upload_to="",
                    ),
                ),
                (
                    "width",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Width in pixels (for images/videos)",
                        null=True,
                    ),
                ),
                (
                    "height",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Height in pixels (for images/videos)",
                        null=True,
                    ),
                ),
                (
                    "file_size",
                    models.BigIntegerField(
                        default=0, help_text="Size of the asset file in bytes"
                    ),
                ),
                (
                    "optimized_by",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Optimization processors applied to this variation",
                    ),
                ),
                (
                    "optimized_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the variation was last optimized",
                        null=True,
                    ),
                ),
                (
                    "media_file",
                    models.ForeignKey(
                        help_text="Parent media file this asset belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="assets",
                        to="media.mediafile",
                    ),
                ),
            ],
            options={
                "verbose_name": "Media Asset",
                "verbose_name_plural": "Media Assets",
                "ordering": ["variation", "-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("media_file", "variation"),
                        name="unique_variation_per_media_file",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="ProcessingJob",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                (
                    "phase",
                    models.CharField(
                        choices=[
                            ("creation", "Creation"),
                            ("optimization", "Optimization"),
                        ],
                        help_text="Pipeline phase of the job",
                        max_length=20,
                    ),
                ),
                (
                    "category",
                    models.CharField(
                        choices=[
                            ("image", "Image"),
                            ("video", "Video"),
                            ("audio", "Audio"),
                            ("text", "Text"),
                            ("archive", "Archive"),
                            ("table", "Table"),
                            ("directb2s", "DirectB2S Backglass"),
                        ],
                        help_text="Category of the destination, selects the queue",
                        max_length=20,
                    ),
                ),
                (
                    "file_id",
                    models.UUIDField(
                        db_index=True,
                        help_text="Id of the media file being processed",
                    ),
                ),
                (
                    "processor",
                    models.CharField(
                        help_text="Name of the processor resolved at enqueue time",
                        max_length=50,
                    ),
                ),
                ("src_path", models.CharField(max_length=500)),
                ("dest_path", models.CharField(max_length=500)),
                (
                    "src_variation",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Source variation, empty for the original",
                        max_length=50,
                    ),
                ),
                (
                    "dest_variation",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Destination variation, empty for the original",
                        max_length=50,
                    ),
                ),
                (
                    "priority",
                    models.IntegerField(
                        default=0, help_text="Lower values are dequeued first"
                    ),
                ),
                (
                    "state",
                    django_fsm.FSMField(
                        choices=[
                            ("waiting", "Waiting"),
                            ("active", "Active"),
                            ("completed", "Completed"),
                            ("dead_lettered", "Dead-lettered"),
                        ],
                        db_index=True,
                        default="waiting",
                        help_text="Current state of the job (managed by FSM)",
                        max_length=50,
                    ),
                ),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("max_retries", models.PositiveIntegerField(default=3)),
                (
                    "available_at",
                    models.DateTimeField(
                        default=django.utils.timezone.now,
                        help_text="Earliest time the job may be pulled",
                    ),
                ),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("finished_at", models.DateTimeField(blank=True, null=True)),
                ("worker", models.CharField(blank=True, default="", max_length=255)),
                ("last_error", models.TextField(blank=True, default="")),
                (
                    "errors",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="One entry per failed attempt",
                    ),
                ),
            ],
            options={
                "verbose_name": "Processing Job",
                "verbose_name_plural": "Processing Jobs",
                "ordering": ["priority", "id"],
                "indexes": [
                    models.Index(
                        fields=["phase", "category", "state", "priority", "id"],
                        name="idx_job_dequeue",
                    )
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(
                            ("phase", "creation"),
                            ("state__in", ["waiting", "active"]),
                        ),
                        fields=("dest_path",),
                        name="unique_live_creation_dest_path",
                    )
                ],
            },
        ),
    ]
