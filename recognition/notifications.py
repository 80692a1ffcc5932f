"""Post-commit notification of attendance events.

Notifications are scheduled with :func:`django.db.transaction.on_commit`, so
nothing is sent for a rolled-back write, and a failing receiver or broker
never undoes a committed event.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Dict

from django.db import transaction
from django.dispatch import Signal

from users.models import AttendanceEvent, UserProfile

from .tasks import relay_attendance_notification

logger = logging.getLogger(__name__)

# Sent with ``event`` and ``payload`` keyword arguments once the write is durable.
attendance_committed = Signal()


def build_payload(event: AttendanceEvent) -> Dict[str, Any]:
    return {
        "event_id": str(event.pk),
        "user_id": event.user_id,
        "kind": str(event.kind),
        "timestamp": event.timestamp.isoformat(),
    }


def dispatch_notification(event: AttendanceEvent) -> Dict[str, Any]:
    payload = build_payload(event)

    for receiver, response in attendance_committed.send_robust(
        sender=AttendanceEvent, event=event, payload=payload
    ):
        if isinstance(response, Exception):
            logger.error(
                "attendance_committed receiver %r failed for event %s: %s",
                receiver,
                payload["event_id"],
                response,
            )

    profile = UserProfile.objects.filter(user_id=event.user_id).first()
    if profile is not None and not profile.notifications_enabled:
        logger.debug("Notifications disabled for user %s", event.user_id)
        return payload

    try:
        relay_attendance_notification.delay(payload)
    except Exception:
        # The event is already committed; losing the notification is acceptable.
        logger.exception("Unable to queue notification for event %s", payload["event_id"])
    return payload


def schedule_notification(event: AttendanceEvent) -> None:
    """Dispatch the notification for ``event`` once the current transaction commits."""

    transaction.on_commit(functools.partial(dispatch_notification, event))
