"""Django admin configuration for media app."""

from django.contrib import admin, messages

from media.exceptions import DestinationBusy
from media.models import JobState, MediaAsset, MediaFile, ProcessingJob


class MediaAssetInline(admin.TabularInline):
    """Materialized variations of a media file."""

    model = MediaAsset
    extra = 0
    can_delete = False
    fields = ["variation", "file", "width", "height", "file_size", "optimized_by", "optimized_at"]
    readonly_fields = fields


@admin.register(MediaFile)
class MediaFileAdmin(admin.ModelAdmin):
    """Admin configuration for MediaFile model."""

    list_display = [
        "id",
        "original_filename",
        "file_type",
        "mime_type",
        "file_size",
        "processing_status",
        "created_at",
    ]
    list_filter = [
        "file_type",
        "processing_status",
    ]
    search_fields = ["original_filename"]
    readonly_fields = [
        "id",
        "file_size",
        "mime_type",
        "metadata",
        "created_at",
        "updated_at",
        "processing_error",
        "processing_started_at",
        "processing_completed_at",
        "optimized_at",
    ]
    inlines = [MediaAssetInline]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["reprocess"]

    @admin.action(description="Reprocess selected files")
    def reprocess(self, request, queryset):
        """Enqueue all jobs of the selected files again."""
        from media.pipeline import get_pipeline

        service = get_pipeline().service
        count = 0
        for media_file in queryset:
            count += len(service.reprocess_file(media_file))
        self.message_user(request, f"Queued {count} jobs for {queryset.count()} files.")


@admin.register(ProcessingJob)
class ProcessingJobAdmin(admin.ModelAdmin):
    """Admin configuration for ProcessingJob model."""

    list_display = [
        "id",
        "phase",
        "category",
        "processor",
        "dest_variation",
        "state",
        "priority",
        "attempts",
        "available_at",
        "finished_at",
    ]
    list_filter = ["state", "phase", "category", "processor"]
    search_fields = ["file_id", "dest_path"]
    readonly_fields = [field.name for field in ProcessingJob._meta.fields]
    ordering = ["priority", "id"]
    actions = ["requeue", "remove_waiting", "drain_queues"]

    @admin.action(description="Requeue selected dead-lettered jobs")
    def requeue(self, request, queryset):
        """Put dead-lettered jobs back in line with a fresh retry budget."""
        from media.pipeline import get_pipeline

        queues = get_pipeline().queues
        count = 0
        for job in queryset.filter(state=JobState.DEAD_LETTERED):
            try:
                queues.for_job(job).requeue(job)
            except DestinationBusy as e:
                self.message_user(request, e.message, level=messages.WARNING)
                continue
            count += 1
        self.message_user(request, f"Requeued {count} jobs.")

    @admin.action(description="Remove selected waiting jobs")
    def remove_waiting(self, request, queryset):
        """Remove jobs that have not started yet."""
        from media.pipeline import get_pipeline
        from media.queues import JobHandle

        queues = get_pipeline().queues
        count = 0
        for job in queryset.filter(state=JobState.WAITING):
            queue = queues.for_job(job)
            count += queue.remove(JobHandle(id=job.pk, queue=queue.name))
        self.message_user(request, f"Removed {count} waiting jobs.")

    @admin.action(description="Drain the queues of selected jobs")
    def drain_queues(self, request, queryset):
        """Remove every waiting job of the queues the selected jobs belong to."""
        from media.pipeline import get_pipeline

        queues = get_pipeline().queues
        keys = set(queryset.values_list("phase", "category"))
        count = sum(queues.get(phase, category).drain() for phase, category in keys)
        self.message_user(request, f"Drained {len(keys)} queues, removed {count} waiting jobs.")

    def has_add_permission(self, request) -> bool:
        """Jobs are only created by the pipeline."""
        return False
