"""
Service layer base class.

Services hold the logic that spans several models or queues. Celery tasks,
admin actions and management commands stay thin and call into them.

Usage:
    from core.services import BaseService

    class ProcessingService(BaseService):
        def process_file(self, media_file):
            with self.atomic():
                ...
            self.get_logger().info("Queued jobs", extra={"media_file_id": str(media_file.pk)})
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Iterator


class BaseService:
    """
    Base for service classes.

    Expected failures are raised as core.exceptions errors. Anything else
    (database errors, bugs) propagates unchanged.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named ``<module>.<ClassName>``."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Iterator[None]:
        """
        Run the block in one database transaction.

        Callbacks registered with transaction.on_commit() inside the block,
        such as consumer kicks from JobQueue.push(), fire after it commits.
        """
        with transaction.atomic():
            yield
