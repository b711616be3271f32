"""
Processor manager.

Holds the processor instances and the queue registry, resolves which
processor handles a transition, and puts jobs on the right queue.

Routing:
    Creation jobs go to the creation queue of the destination variation's
    category. Optimization jobs go to the optimization queue of the
    optimized variation's category (the original's, if no variation).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

from django.core import checks

from media.categories import MimeCategory
from media.exceptions import AmbiguousProcessor, UnknownProcessor, UnresolvedProcessor
from media.models import Phase
from media.variations import iter_catalog

if TYPE_CHECKING:
    from media.models import MediaFile
    from media.processors import CreationProcessor, OptimizationProcessor
    from media.queues import JobHandle, JobQueue, QueueRegistry
    from media.variations import Variation

logger = logging.getLogger(__name__)


class ProcessorManager:
    """
    Registry of processors and entry point for enqueuing jobs.

    Args:
        creation_processors: Available creation processors.
        optimization_processors: Available optimization processors.
        queues: Registry holding one queue per (phase, category).
    """

    def __init__(
        self,
        creation_processors: Iterable["CreationProcessor"],
        optimization_processors: Iterable["OptimizationProcessor"],
        queues: "QueueRegistry",
    ):
        self.creation_processors = list(creation_processors)
        self.optimization_processors = list(optimization_processors)
        self.queues = queues

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve_creation_processor(
        self,
        media_file: "MediaFile",
        src_variation: "Variation | None",
        dest_variation: "Variation",
    ) -> "CreationProcessor":
        """
        Return the one creation processor for a transition.

        Raises:
            UnresolvedProcessor: No processor handles the transition. The
                variation is skipped, nothing else is affected.
            AmbiguousProcessor: More than one processor claims the
                transition, the catalog or processor set is misconfigured.
        """
        processors = [
            processor
            for processor in self.creation_processors
            if processor.can_process(media_file, src_variation, dest_variation)
        ]
        if not processors:
            raise UnresolvedProcessor(
                f"No creation processor found for {media_file.to_detailed_string(src_variation)} "
                f"to {media_file.to_detailed_string(dest_variation)}",
                details={
                    "media_file_id": str(media_file.pk),
                    "src_variation": src_variation.name if src_variation else None,
                    "dest_variation": dest_variation.name,
                },
            )
        if len(processors) > 1:
            raise AmbiguousProcessor(
                f"Found {len(processors)} creation processors for "
                f"{media_file.to_detailed_string(src_variation)} to "
                f"{media_file.to_detailed_string(dest_variation)}: "
                f"{', '.join(p.name for p in processors)}",
                details={"processors": [p.name for p in processors]},
            )
        return processors[0]

    def resolve_optimization_processors(
        self,
        media_file: "MediaFile",
        variation: "Variation | None" = None,
    ) -> list["OptimizationProcessor"]:
        """Return the optimization processors for a variation, or the original."""
        return [
            processor
            for processor in self.optimization_processors
            if processor.can_process(media_file, variation)
        ]

    def get_creation_processor(self, name: str) -> "CreationProcessor":
        return self._by_name(self.creation_processors, name, Phase.CREATION)

    def get_optimization_processor(self, name: str) -> "OptimizationProcessor":
        return self._by_name(self.optimization_processors, name, Phase.OPTIMIZATION)

    def get_processor(self, phase: str, name: str):
        if phase == Phase.CREATION:
            return self.get_creation_processor(name)
        return self.get_optimization_processor(name)

    @staticmethod
    def _by_name(processors, name: str, phase: str):
        for processor in processors:
            if processor.name == name:
                return processor
        raise UnknownProcessor(
            f"No {phase} processor named '{name}'",
            details={"phase": str(phase), "processor": name},
        )

    # =========================================================================
    # Enqueuing
    # =========================================================================

    def enqueue_creation(
        self,
        processor: "CreationProcessor",
        media_file: "MediaFile",
        src_path: str,
        dest_path: str,
        src_variation: "Variation | None",
        dest_variation: "Variation",
    ) -> "JobHandle":
        """
        Add a creation job to the queue of the destination's category.

        Raises:
            DestinationBusy: A creation job for dest_path is already live.
            QueueUnavailable: The job store is unreachable.
        """
        queue = self.queue_for(Phase.CREATION, media_file.get_category(dest_variation))
        handle = queue.push(
            file_id=media_file.pk,
            processor=processor.name,
            src_path=src_path,
            dest_path=dest_path,
            src_variation=src_variation.name if src_variation else None,
            dest_variation=dest_variation.name,
            priority=processor.get_order(dest_variation),
        )
        logger.debug(
            f"Added {media_file.to_detailed_string(dest_variation)} based on "
            f"{media_file.to_detailed_string(src_variation)} to creation queue",
            extra={"processor": processor.name, "job": str(handle)},
        )
        return handle

    def enqueue_optimization(
        self,
        processor: "OptimizationProcessor",
        media_file: "MediaFile",
        src_path: str,
        dest_path: str,
        variation: "Variation | None" = None,
    ) -> "JobHandle":
        """
        Add an optimization job to the queue of the variation's category.

        Raises:
            QueueUnavailable: The job store is unreachable.
        """
        queue = self.queue_for(Phase.OPTIMIZATION, media_file.get_category(variation))
        name = variation.name if variation else None
        handle = queue.push(
            file_id=media_file.pk,
            processor=processor.name,
            src_path=src_path,
            dest_path=dest_path,
            src_variation=name,
            dest_variation=name,
            priority=processor.get_order(variation),
        )
        logger.debug(
            f"Added {media_file.to_detailed_string(variation)} to optimization queue",
            extra={"processor": processor.name, "job": str(handle)},
        )
        return handle

    # =========================================================================
    # Queues
    # =========================================================================

    def queue_for(self, phase: str, category: str) -> "JobQueue":
        return self.queues.get(phase, category)

    def all_queues(self) -> list["JobQueue"]:
        return list(self.queues)

    def all_queues_for(self, media_file: "MediaFile") -> list["JobQueue"]:
        """
        Return the queues that may hold jobs of a file.

        These are the queues of both phases for the category of the original
        and of every declared variation. Each queue is listed once, in phase
        then category declaration order.
        """
        categories = {media_file.get_category()}
        categories.update(media_file.get_category(v) for v in media_file.get_variations())
        return [
            self.queue_for(phase, category)
            for phase in Phase
            for category in MimeCategory
            if category in categories
        ]

    # =========================================================================
    # Startup Check
    # =========================================================================

    def check_catalog(self) -> list[str]:
        """
        Verify every catalog entry resolves to exactly one creation processor.

        Returns:
            Problem descriptions, empty if the catalog is consistent.
        """
        from media.models import MediaFile

        problems = []
        for file_type, mime_type, variation in iter_catalog():
            probe = MediaFile(file_type=file_type, mime_type=mime_type)
            src_variation = probe.get_variation(variation.source)
            if variation.source and src_variation is None:
                problems.append(
                    f"{file_type} ({mime_type}): variation '{variation.name}' has "
                    f"undeclared source '{variation.source}'"
                )
                continue
            try:
                self.resolve_creation_processor(probe, src_variation, variation)
            except (UnresolvedProcessor, AmbiguousProcessor) as e:
                problems.append(f"{file_type} ({mime_type}): {e.message}")
        return problems


@checks.register()
def check_variation_catalog(app_configs=None, **kwargs):
    """Django system check wrapping ProcessorManager.check_catalog()."""
    from django.apps import apps

    pipeline = getattr(apps.get_app_config("media"), "pipeline", None)
    if pipeline is None:
        return []
    return [
        checks.Error(problem, hint="Adjust the variation catalog or processors.", id="media.E001")
        for problem in pipeline.manager.check_catalog()
    ]
