"""Background jobs for the attendance service."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from django.conf import settings
from django.utils.module_loading import import_string

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(bind=True, name="recognition.tasks.relay_attendance_notification", ignore_result=True)
def relay_attendance_notification(self, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Forward a committed attendance event to ``ATTENDANCE_NOTIFICATION_HANDLER``.

    The handler is any importable callable accepting the payload dict. Without
    one configured the task only logs the event.
    """

    handler_path = getattr(settings, "ATTENDANCE_NOTIFICATION_HANDLER", "")
    if not handler_path:
        logger.debug(
            "No notification handler configured; skipping %s event %s",
            payload.get("kind"),
            payload.get("event_id"),
        )
        return {"event_id": payload.get("event_id"), "status": "skipped"}

    handler = import_string(handler_path)
    try:
        handler(dict(payload))
    except Exception:
        logger.exception(
            "Notification handler %s failed for event %s (task_id=%s)",
            handler_path,
            payload.get("event_id"),
            self.request.id,
        )
        raise

    logger.info("Relayed %s notification for event %s", payload.get("kind"), payload.get("event_id"))
    return {"event_id": payload.get("event_id"), "status": "delivered"}
