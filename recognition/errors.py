"""Exceptions raised by the face verification, attendance and lockout services.

Every error derives from :class:`AttendanceError` and carries a stable
``code`` and an HTTP ``status_code`` so the API layer can render it without
inspecting the concrete type.
"""

from __future__ import annotations

import datetime
import math
from typing import Any, Optional, Sequence


class AttendanceError(Exception):
    """Base class for every expected, caller-facing failure."""

    code = "attendance_error"
    status_code = 400
    default_message = "The request could not be completed."

    def __init__(self, message: Optional[str] = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


# --- Validation -------------------------------------------------------------


class SampleValidationError(AttendanceError):
    """Malformed input: undecodable image, missing fields or unusable faces."""

    code = "validation_error"
    default_message = "The submitted face sample is invalid."


class NoFaceDetected(SampleValidationError):
    code = "no_face_detected"
    default_message = "No face detected in image."


class MultipleFacesDetected(SampleValidationError):
    code = "multiple_faces_detected"
    default_message = "Multiple faces detected. Please ensure only one face is visible."


class EnrollmentFailed(SampleValidationError):
    """Raised when too few samples survive per-sample validation."""

    code = "enrollment_failed"
    default_message = "No valid faces found in provided images."

    def __init__(self, message: Optional[str] = None, *, rejected: Sequence[Any] = ()) -> None:
        super().__init__(message)
        self.rejected = list(rejected)
        self.details = {
            "rejected": [
                {"index": item.index, "reason": item.reason} for item in self.rejected
            ]
        }


# --- Verification -----------------------------------------------------------


class FaceNotEnrolled(AttendanceError):
    code = "face_not_registered"
    default_message = "Please register your face before marking attendance."


class FaceNotVerified(AttendanceError):
    code = "face_verification_failed"
    default_message = "Face verification failed. Please try again."


# --- Ledger -----------------------------------------------------------------


class AlreadyMarked(AttendanceError):
    code = "already_marked"
    status_code = 409
    default_message = "Attendance already marked for today."


class StoreConflict(AlreadyMarked):
    """A concurrent write won the race on the ``(user, day, kind)`` constraint."""

    code = "already_marked"


class NotCheckedIn(AttendanceError):
    code = "not_checked_in"
    status_code = 409
    default_message = "Check-in must be recorded before check-out."


class RecordNotFound(AttendanceError):
    code = "not_found"
    status_code = 404
    default_message = "Attendance record not found."


class NotPrivileged(AttendanceError):
    code = "forbidden"
    status_code = 403
    default_message = "Admin privileges required."


# --- Lockout ----------------------------------------------------------------


class _RetryAfterError(AttendanceError):
    def __init__(
        self,
        message: Optional[str] = None,
        *,
        retry_after: Optional[datetime.timedelta] = None,
    ) -> None:
        super().__init__(message)
        self.retry_after = retry_after
        if retry_after is not None:
            self.details = {"retry_after": self.retry_after_seconds}

    @property
    def retry_after_seconds(self) -> Optional[int]:
        if self.retry_after is None:
            return None
        return max(0, math.ceil(self.retry_after.total_seconds()))


class AccountLocked(_RetryAfterError):
    code = "account_locked"
    status_code = 423
    default_message = "Account temporarily locked after repeated failed logins."


class RateLimited(_RetryAfterError):
    code = "rate_limited"
    status_code = 429
    default_message = "Too many login attempts. Please try again later."


# --- Extractor --------------------------------------------------------------


class ExtractorTimeout(AttendanceError):
    """The embedding extractor did not answer within the configured budget."""

    code = "extractor_timeout"
    status_code = 503
    default_message = "Face analysis timed out. Please try again."
