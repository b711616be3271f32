"""
Core views providing infrastructure endpoints.

This module contains views that are not part of the business domain but are
essential for operating the pipeline, such as health checks.
"""

import logging

from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check endpoint for monitoring and orchestration.

    Reports database connectivity and a summary of the processing backlog,
    so that monitoring can alert on a growing dead-letter count.

    Returns:
        JsonResponse with status and component health:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "disconnected"
        - jobs: counts per job state (only when the database is reachable)

    HTTP Status Codes:
        200: Database reachable
        503: Database unreachable

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "jobs": {"waiting": 12, "active": 2, "dead_lettered": 0}
        }
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
    }

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except DatabaseError:
        logger.warning("Health check could not reach the database", exc_info=True)
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        return JsonResponse(health_status, status=503)

    from media.models import ProcessingJob

    health_status["jobs"] = ProcessingJob.objects.state_counts()
    return JsonResponse(health_status, status=200)
