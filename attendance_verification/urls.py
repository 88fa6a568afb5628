"""
Main URL configuration for the attendance verification project.

Biometric endpoints live under ``/api/v1/``; Prometheus metrics are served
at ``/metrics`` for staff.
"""

from django.contrib import admin
from django.urls import include, path

from biometrics.api.views import monitoring_metrics

urlpatterns = [
    path("api/v1/", include("biometrics.api.urls")),
    path("admin/", admin.site.urls),
    path("metrics", monitoring_metrics, name="monitoring-metrics"),
]
