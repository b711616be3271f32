"""
Reprocess media files.

Usage (from the app/ directory):
    python manage.py reprocess_media <uuid> [<uuid> ...]
    python manage.py reprocess_media --file-type backglass --variation medium
    python manage.py reprocess_media --status degraded --optimizer image.optimize
"""

from django.core.management.base import BaseCommand, CommandError

from media.models import MediaFile
from media.pipeline import get_pipeline
from media.variations import FileType


class Command(BaseCommand):
    help = "Enqueue the processing jobs of media files again."

    def add_arguments(self, parser):
        parser.add_argument("ids", nargs="*", help="MediaFile UUIDs")
        parser.add_argument("--file-type", choices=FileType.values)
        parser.add_argument("--status", choices=MediaFile.ProcessingStatus.values)
        parser.add_argument(
            "--variation",
            action="append",
            dest="variations",
            help="Only create this variation (repeatable)",
        )
        parser.add_argument(
            "--optimizer",
            action="append",
            dest="optimizers",
            help="Only run this optimization processor (repeatable)",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List the files without enqueuing anything",
        )

    def handle(self, *args, **options):
        queryset = MediaFile.objects.all()
        if options["ids"]:
            queryset = queryset.filter(pk__in=options["ids"])
        if options["file_type"]:
            queryset = queryset.filter(file_type=options["file_type"])
        if options["status"]:
            queryset = queryset.filter(processing_status=options["status"])
        if not (options["ids"] or options["file_type"] or options["status"]):
            raise CommandError("Give file ids, --file-type or --status.")

        variations = options["variations"]
        optimizers = options["optimizers"]
        filter_variations = (lambda v: v.name in variations) if variations else None
        filter_optimizations = (lambda p: p.name in optimizers) if optimizers else None

        service = get_pipeline().service
        file_count = 0
        job_count = 0
        for media_file in queryset.iterator():
            file_count += 1
            if options["dry_run"]:
                self.stdout.write(media_file.to_detailed_string())
                continue
            handles = service.reprocess_file(media_file, filter_variations, filter_optimizations)
            job_count += len(handles)
            self.stdout.write(f"{media_file.to_detailed_string()}: {len(handles)} job(s)")

        self.stdout.write(
            self.style.SUCCESS(f"Queued {job_count} jobs for {file_count} files.")
        )
