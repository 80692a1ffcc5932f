"""Injectable time source for attendance and lockout bookkeeping."""

from __future__ import annotations

import datetime
from typing import Protocol

from django.utils import timezone


class Clock(Protocol):
    def now(self) -> datetime.datetime:  # pragma: no cover - protocol
        ...


class SystemClock:
    """Timezone-aware wall clock backed by :func:`django.utils.timezone.now`."""

    def now(self) -> datetime.datetime:
        return timezone.now()


def local_day(moment: datetime.datetime) -> datetime.date:
    """Return the calendar day of ``moment`` in the configured local time zone."""

    return timezone.localdate(moment)

