"""The attendance ledger.

Per user and local calendar day the ledger moves through
``NoRecord -> CheckedIn -> CheckedOut``. Every write follows the same
pipeline: validate, verify the face, check for duplicates, derive the
lateness flags, then commit in one transaction. Notifications are sent only
after the commit.

Privileged corrections (update, delete, review) bypass face verification
and are recorded in :class:`users.models.AttendanceAudit`.
"""

from __future__ import annotations

import datetime
import enum
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction

import numpy as np
import sentry_sdk

from users.models import ApprovalStatus, AttendanceAudit, AttendanceEvent, AttendanceKind

from .clock import Clock, SystemClock, local_day
from .derivations import AttendancePolicy, derive_flags
from .errors import (
    AlreadyMarked,
    FaceNotVerified,
    NotCheckedIn,
    NotPrivileged,
    RecordNotFound,
    StoreConflict,
)
from .extractor import EmbeddingExtractor
from .liveness import LivenessGate
from .notifications import schedule_notification
from .verification import FaceVerifier, enrolled_embeddings, verify_user_face

logger = logging.getLogger(__name__)


class DayState(str, enum.Enum):
    NO_RECORD = "no-record"
    CHECKED_IN = "checked-in"
    CHECKED_OUT = "checked-out"


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    address: str = ""


@dataclass(frozen=True)
class EventContext:
    """Client metadata stored alongside an event."""

    ip_address: Optional[str] = None
    user_agent: str = ""
    device_id: str = ""
    notes: str = ""


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


class AttendanceLedger:
    """Records face-verified check-ins and check-outs."""

    def __init__(
        self,
        *,
        clock: Optional[Clock] = None,
        extractor: Optional[EmbeddingExtractor] = None,
        verifier: Optional[FaceVerifier] = None,
        liveness_gate: Optional[LivenessGate] = None,
        require_liveness: Optional[bool] = None,
        policy: Optional[AttendancePolicy] = None,
    ) -> None:
        self.clock = clock or SystemClock()
        self.extractor = extractor
        self.verifier = verifier or FaceVerifier()
        self.liveness_gate = liveness_gate or LivenessGate(extractor)
        self.require_liveness = (
            settings.ATTENDANCE_REQUIRE_LIVENESS if require_liveness is None else require_liveness
        )
        self.policy = policy or AttendancePolicy.from_settings()

    # --- Writes -------------------------------------------------------------

    def record_check_in(
        self,
        user,
        image: np.ndarray,
        location: Optional[Location] = None,
        *,
        context: Optional[EventContext] = None,
    ) -> AttendanceEvent:
        return self._record(AttendanceKind.CHECK_IN, user, image, location, context)

    def record_check_out(
        self,
        user,
        image: np.ndarray,
        location: Optional[Location] = None,
        *,
        context: Optional[EventContext] = None,
    ) -> AttendanceEvent:
        return self._record(AttendanceKind.CHECK_OUT, user, image, location, context)

    def record(self, kind: str, user, image: np.ndarray, location=None, *, context=None) -> AttendanceEvent:
        if kind == AttendanceKind.CHECK_IN:
            return self.record_check_in(user, image, location, context=context)
        return self.record_check_out(user, image, location, context=context)

    def _verify(self, user, image: np.ndarray):
        enrolled = enrolled_embeddings(user)

        if self.require_liveness:
            liveness = self.liveness_gate.check(image)
            if not liveness.is_live:
                logger.warning("Liveness gate rejected attendance for user %s", user.pk)
                raise FaceNotVerified(
                    "Liveness check failed. Please try again.",
                    liveness=round(liveness.confidence, 4),
                )

        result = verify_user_face(
            user, image, extractor=self.extractor, verifier=self.verifier, enrolled=enrolled
        )
        if not result.verified:
            raise FaceNotVerified(confidence=round(result.confidence, 4))
        return result

    def _ensure_transition(self, kind: str, user, day: datetime.date) -> None:
        kind = str(kind)
        existing = {
            str(value)
            for value in AttendanceEvent.objects.for_day(user, day).values_list("kind", flat=True)
        }
        if kind in existing:
            if kind == AttendanceKind.CHECK_IN:
                raise AlreadyMarked("Already checked in today.")
            raise AlreadyMarked("Already checked out today.")
        if kind == AttendanceKind.CHECK_OUT and AttendanceKind.CHECK_IN.value not in existing:
            raise NotCheckedIn("Must check in before checking out.")

    def _record(
        self,
        kind: str,
        user,
        image: np.ndarray,
        location: Optional[Location],
        context: Optional[EventContext],
    ) -> AttendanceEvent:
        context = context or EventContext()
        result = self._verify(user, image)

        timestamp = self.clock.now()
        day = local_day(timestamp)
        self._ensure_transition(kind, user, day)

        event = AttendanceEvent(
            user=user,
            kind=kind,
            day=day,
            timestamp=timestamp,
            face_verified=True,
            confidence=min(1.0, max(0.0, result.confidence)),
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            device_id=context.device_id,
            notes=context.notes,
            **derive_flags(kind, timestamp, self.policy),
        )
        if location is not None:
            event.latitude = location.latitude
            event.longitude = location.longitude
            event.address = location.address

        try:
            with transaction.atomic():
                event.save(force_insert=True)
                schedule_notification(event)
        except IntegrityError as exc:
            logger.warning("Concurrent %s for user %s on %s", kind, user.pk, day)
            raise StoreConflict() from exc

        logger.info(
            "Recorded %s for user %s at %s (confidence %.3f)",
            kind,
            user.pk,
            timestamp.isoformat(),
            event.confidence,
        )
        sentry_sdk.add_breadcrumb(
            category="attendance",
            message=f"{kind} recorded",
            level="info",
            data={"user_id": user.pk, "event_id": str(event.pk)},
        )
        return event

    # --- Reads --------------------------------------------------------------

    def events_for_day(self, user, day: Optional[datetime.date] = None) -> List[AttendanceEvent]:
        day = day or local_day(self.clock.now())
        return list(AttendanceEvent.objects.for_day(user, day))

    def day_state(self, user, day: Optional[datetime.date] = None) -> DayState:
        kinds = {str(event.kind) for event in self.events_for_day(user, day)}
        if AttendanceKind.CHECK_OUT.value in kinds:
            return DayState.CHECKED_OUT
        if AttendanceKind.CHECK_IN.value in kinds:
            return DayState.CHECKED_IN
        return DayState.NO_RECORD

    def history(
        self,
        user,
        start: Optional[datetime.date] = None,
        end: Optional[datetime.date] = None,
        limit: Optional[int] = None,
    ) -> List[AttendanceEvent]:
        """Return the user's events between ``start`` and ``end`` (inclusive), newest first."""

        limit = settings.ATTENDANCE_HISTORY_LIMIT if limit is None else limit
        queryset = (
            AttendanceEvent.objects.filter(user=user)
            .between(start, end)
            .select_related("user")
            .order_by("-timestamp")
        )
        return list(queryset[:limit])

    def daily_history(
        self,
        user,
        start: Optional[datetime.date] = None,
        end: Optional[datetime.date] = None,
        limit: Optional[int] = None,
    ) -> List[AttendanceEvent]:
        """Return every event of the user's ``limit`` most recent days, newest first.

        The limit counts days, so a check-in is never separated from the
        check-out it pairs with.
        """

        limit = settings.ATTENDANCE_HISTORY_LIMIT if limit is None else limit
        in_window = AttendanceEvent.objects.filter(user=user).between(start, end)
        days = list(
            in_window.order_by("-day").values_list("day", flat=True).distinct()[:limit]
        )
        queryset = (
            in_window.filter(day__in=days).select_related("user").order_by("-timestamp")
        )
        return list(queryset)

    def events_on(self, day: datetime.date, user=None) -> List[AttendanceEvent]:
        """Return the events of local calendar ``day`` in commit order, for one user or everyone."""

        queryset = AttendanceEvent.objects.filter(day=day)
        if user is not None:
            queryset = queryset.filter(user=user)
        return list(queryset.select_related("user").order_by("timestamp", "user_id"))

    def get_event(self, event_id) -> AttendanceEvent:
        try:
            return AttendanceEvent.objects.select_related("user").get(pk=event_id)
        except (AttendanceEvent.DoesNotExist, ValidationError, ValueError) as exc:
            raise RecordNotFound() from exc

    # --- Privileged corrections ---------------------------------------------

    @staticmethod
    def _require_privilege(is_privileged: bool) -> None:
        if not is_privileged:
            raise NotPrivileged()

    def _audit(self, actor, event: AttendanceEvent, action: str, changes: Dict[str, Any]) -> None:
        AttendanceAudit.objects.create(
            event_id=event.pk,
            owner_id=event.user_id,
            actor=actor,
            action=action,
            changes={key: _jsonable(value) for key, value in changes.items()},
        )
        logger.info(
            "User %s performed %s on attendance event %s",
            getattr(actor, "pk", None),
            action,
            event.pk,
        )

    def update_event(
        self,
        actor,
        event_id,
        *,
        is_privileged: bool,
        kind: Optional[str] = None,
        timestamp: Optional[datetime.datetime] = None,
        location: Optional[Location] = None,
        notes: Optional[str] = None,
    ) -> AttendanceEvent:
        """Correct an event without face verification and mark it as modified."""

        self._require_privilege(is_privileged)
        event = self.get_event(event_id)

        changes: Dict[str, Any] = {}

        def change(field: str, value: Any) -> None:
            old = getattr(event, field)
            if old != value:
                changes[field] = {"old": _jsonable(old), "new": _jsonable(value)}
                setattr(event, field, value)

        if kind is not None:
            change("kind", str(kind))
        if timestamp is not None:
            change("timestamp", timestamp)
        if "kind" in changes or "timestamp" in changes:
            change("day", local_day(event.timestamp))
            for field, value in derive_flags(event.kind, event.timestamp, self.policy).items():
                change(field, value)
        if location is not None:
            change("latitude", location.latitude)
            change("longitude", location.longitude)
            change("address", location.address)
        if notes is not None:
            change("notes", notes)

        event.approval_status = ApprovalStatus.MODIFIED
        try:
            with transaction.atomic():
                event.save()
                self._audit(actor, event, AttendanceAudit.Action.UPDATE, changes)
        except IntegrityError as exc:
            raise StoreConflict(
                "Another event of this kind already exists for that day."
            ) from exc
        return event

    def delete_event(self, actor, event_id, *, is_privileged: bool) -> None:
        self._require_privilege(is_privileged)
        event = self.get_event(event_id)
        snapshot = {
            "kind": event.kind,
            "day": event.day,
            "timestamp": event.timestamp,
            "confidence": event.confidence,
        }
        with transaction.atomic():
            self._audit(actor, event, AttendanceAudit.Action.DELETE, snapshot)
            event.delete()

    def review_event(
        self,
        actor,
        event_id,
        *,
        is_privileged: bool,
        approved: bool,
        reason: str = "",
    ) -> AttendanceEvent:
        """Approve or reject an event on behalf of ``actor``."""

        self._require_privilege(is_privileged)
        event = self.get_event(event_id)
        previous = event.approval_status

        event.approval_status = ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED
        event.approved_by = actor
        event.approved_at = self.clock.now()
        event.rejection_reason = "" if approved else reason[:200]

        action = AttendanceAudit.Action.APPROVE if approved else AttendanceAudit.Action.REJECT
        with transaction.atomic():
            event.save(
                update_fields=[
                    "approval_status",
                    "approved_by",
                    "approved_at",
                    "rejection_reason",
                    "updated_at",
                ]
            )
            self._audit(
                actor,
                event,
                action,
                {"approval_status": {"old": previous, "new": event.approval_status}, "reason": event.rejection_reason},
            )
        return event
