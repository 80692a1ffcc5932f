"""Values derived from attendance events.

All functions are pure: they take events (or timestamps) and an explicit
:class:`AttendancePolicy` and never touch the database or the clock.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Iterable, List, Optional

from django.conf import settings
from django.utils import timezone

from users.models import ApprovalStatus, AttendanceKind


@dataclass(frozen=True)
class AttendancePolicy:
    work_start: datetime.time = datetime.time(9, 0)
    work_end: datetime.time = datetime.time(17, 0)

    @classmethod
    def from_settings(cls) -> "AttendancePolicy":
        return cls(
            work_start=settings.ATTENDANCE_WORK_START_TIME,
            work_end=settings.ATTENDANCE_WORK_END_TIME,
        )


def work_boundary(day: datetime.date, at: datetime.time) -> datetime.datetime:
    """Return ``at`` on ``day`` as an aware datetime in the current time zone."""

    return timezone.make_aware(datetime.datetime.combine(day, at))


def compute_is_late(timestamp: datetime.datetime, policy: AttendancePolicy) -> bool:
    day = timezone.localdate(timestamp)
    return timestamp > work_boundary(day, policy.work_start)


def compute_is_early_leave(timestamp: datetime.datetime, policy: AttendancePolicy) -> bool:
    day = timezone.localdate(timestamp)
    return timestamp < work_boundary(day, policy.work_end)


def derive_flags(kind: str, timestamp: datetime.datetime, policy: AttendancePolicy) -> dict:
    """Return the ``is_late`` / ``is_early_leave`` pair for an event of ``kind``."""

    if kind == AttendanceKind.CHECK_IN:
        return {"is_late": compute_is_late(timestamp, policy), "is_early_leave": False}
    return {"is_late": False, "is_early_leave": compute_is_early_leave(timestamp, policy)}


def hours_worked(check_out, check_in) -> float:
    """Hours between a check-in and its check-out; ``0.0`` for a missing or inverted pair."""

    if check_out is None or check_in is None:
        return 0.0
    elapsed = (check_out.timestamp - check_in.timestamp).total_seconds()
    if elapsed <= 0:
        return 0.0
    return elapsed / 3600.0


@dataclass(frozen=True)
class DailyRecord:
    day: datetime.date
    check_in: Optional[object]
    check_out: Optional[object]
    hours_worked: float
    is_late: bool
    is_early_leave: bool


def pair_daily_records(events: Iterable) -> List[DailyRecord]:
    """Group events by local day and pair each check-in with its check-out.

    Records are ordered by day, most recent first.
    """

    by_day: dict[datetime.date, dict[str, object]] = {}
    for event in events:
        by_day.setdefault(event.day, {})[str(event.kind)] = event

    records: List[DailyRecord] = []
    for day in sorted(by_day, reverse=True):
        check_in = by_day[day].get(AttendanceKind.CHECK_IN.value)
        check_out = by_day[day].get(AttendanceKind.CHECK_OUT.value)
        records.append(
            DailyRecord(
                day=day,
                check_in=check_in,
                check_out=check_out,
                hours_worked=hours_worked(check_out, check_in),
                is_late=bool(check_in is not None and check_in.is_late),
                is_early_leave=bool(check_out is not None and check_out.is_early_leave),
            )
        )
    return records


def status_label(event) -> str:
    """Human-readable status of an event, approval state first."""

    if event.approval_status == ApprovalStatus.REJECTED:
        return "Rejected"
    if event.approval_status == ApprovalStatus.PENDING:
        return "Pending Approval"
    if event.approval_status == ApprovalStatus.MODIFIED:
        return "Modified"
    if event.kind == AttendanceKind.CHECK_IN:
        return "Late Check-in" if event.is_late else "On Time"
    return "Early Leave" if event.is_early_leave else "Regular Check-out"


def is_trusted(event, minimum_confidence: float = 0.8) -> bool:
    """Whether an event was face-verified with at least ``minimum_confidence``."""

    return bool(event.face_verified and event.confidence >= minimum_confidence)
