"""
Root URL configuration for the face_attendance project.

The JSON API lives under ``/api/v1/``; the Django admin is kept for staff
members who need to inspect attendance events and audit entries.
"""

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/v1/", include("recognition.api.urls")),
]
