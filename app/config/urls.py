"""
URL configuration for the media pipeline.

The pipeline has no public HTTP surface. The admin is the operational
console for inspecting, requeueing and draining processing jobs.

URL Structure:
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for Docker, load balancers)
"""

from django.contrib import admin
from django.urls import path

from core.views import health_check

urlpatterns = [
    path("admin/", admin.site.urls),
    path("health/", health_check, name="health_check"),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Media Pipeline Admin"
admin.site.site_title = "Media Pipeline"
admin.site.index_title = "Processing queues and media files"
