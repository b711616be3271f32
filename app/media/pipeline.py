"""
Wiring of the media pipeline.

The pipeline is built once per process in MediaConfig.ready() and kept on
the app config. Tasks, admin actions and management commands look it up
with get_pipeline().

Receiver order on variation_created matters: the sequencing receiver
enqueues follow-up jobs before the record store receiver decides whether
the file is ready, so connect_sequencing() runs before connect_signals().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from django.apps import apps

from media.manager import ProcessorManager
from media.processors import default_creation_processors, default_optimization_processors
from media.queues import QueueRegistry, build_queues
from media.services.processing import ProcessingService
from media.signals import variation_created
from media.worker import ProcessorWorker

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    queues: QueueRegistry
    manager: ProcessorManager
    worker: ProcessorWorker
    service: ProcessingService


def build_pipeline(
    queues: QueueRegistry | None = None,
    creation_processors=None,
    optimization_processors=None,
) -> Pipeline:
    """
    Assemble queues, processors, worker and coordinator.

    Args:
        queues: Queue registry, built from settings if omitted.
        creation_processors: Defaults to the shipped creation processors.
        optimization_processors: Defaults to the shipped optimization processors.

    Raises:
        ImproperlyConfigured: If the retry settings are inconsistent.
    """
    queues = queues if queues is not None else build_queues()
    manager = ProcessorManager(
        creation_processors if creation_processors is not None else default_creation_processors(),
        (
            optimization_processors
            if optimization_processors is not None
            else default_optimization_processors()
        ),
        queues,
    )
    return Pipeline(
        queues=queues,
        manager=manager,
        worker=ProcessorWorker(manager),
        service=ProcessingService(manager),
    )


def get_pipeline() -> Pipeline:
    """Return the pipeline of this process."""
    return apps.get_app_config("media").pipeline


def sequence_variation(sender, media_file, variation, **kwargs):
    """Enqueue the jobs depending on a newly created variation."""
    get_pipeline().service.handle_variation_created(media_file, variation)


def connect_sequencing():
    variation_created.connect(sequence_variation, dispatch_uid="media_sequence_variation")
    logger.debug("Media pipeline sequencing connected")
