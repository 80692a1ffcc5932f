"""
This file contains the app configuration for the recognition app.

The recognition app holds the face verification, enrollment, liveness and
attendance ledger services together with the REST API that exposes them.
"""

from django.apps import AppConfig


class RecognitionConfig(AppConfig):
    """
    Configuration class for the recognition app.

    Importing the tasks module on startup registers the notification relay
    with the Celery application before any attendance event is committed.
    """

    name = "recognition"

    def ready(self) -> None:
        from . import tasks  # noqa: F401
