"""Django project package for the face-verified attendance service."""

from .celery import app as celery_app

__all__ = ["celery_app"]
