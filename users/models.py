"""
Database models for the users app.

This module defines the per-user face enrollment data (profile flags and the
encrypted embedding sequence) and the attendance ledger tables: one row per
check-in or check-out event plus an audit trail for privileged corrections.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from django.contrib.auth.models import User
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

import numpy as np

from src.common import decrypt_embedding, encrypt_embedding


class UserProfile(models.Model):
    """
    Attendance-related attributes of a user.

    ``face_enrolled`` is true exactly when the user owns at least one
    :class:`FaceEmbedding`; only the enrollment service changes either.
    """

    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        related_name="profile",
        help_text="The user these attendance settings belong to.",
    )
    face_enrolled = models.BooleanField(
        default=False,
        help_text="Whether the user has a complete set of enrolled face embeddings.",
    )
    department = models.CharField(max_length=50, blank=True)
    employee_id = models.CharField(max_length=20, blank=True)
    position = models.CharField(max_length=50, blank=True)
    notifications_enabled = models.BooleanField(
        default=True,
        help_text="Relay a notification after each committed attendance event.",
    )
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        status = "enrolled" if self.face_enrolled else "not enrolled"
        return f"{self.user.username} ({status})"

    @classmethod
    def for_user(cls, user: User) -> "UserProfile":
        """Return the profile of ``user``, creating an empty one on first access."""

        profile, _ = cls.objects.get_or_create(user=user)
        return profile


class FaceEmbeddingQuerySet(models.QuerySet["FaceEmbedding"]):
    def for_user(self, user: User) -> "FaceEmbeddingQuerySet":
        return self.filter(user=user).order_by("position")

    def vectors(self) -> List[np.ndarray]:
        """Decrypt the embeddings in enrollment order."""

        return [entry.as_array() for entry in self.order_by("position")]


class FaceEmbedding(models.Model):
    """One enrolled face embedding, stored encrypted with the face data key."""

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="face_embeddings",
        db_index=True,
    )
    position = models.PositiveSmallIntegerField(
        help_text="Zero-based enrollment order of this embedding.",
    )
    dimension = models.PositiveIntegerField()
    vector = models.BinaryField(help_text="Fernet token of the float64 embedding buffer.")
    created_at = models.DateTimeField(auto_now_add=True)

    objects: FaceEmbeddingQuerySet = FaceEmbeddingQuerySet.as_manager()

    class Meta:
        ordering = ["user_id", "position"]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "position"], name="users_embedding_user_position_uniq"
            ),
        ]

    def __str__(self) -> str:
        return f"{self.user.username} #{self.position} ({self.dimension}d)"

    @classmethod
    def build(cls, user: User, position: int, embedding: np.ndarray) -> "FaceEmbedding":
        vector = np.asarray(embedding, dtype=np.float64).ravel()
        return cls(
            user=user,
            position=position,
            dimension=int(vector.size),
            vector=encrypt_embedding(vector),
        )

    def as_array(self) -> np.ndarray:
        return decrypt_embedding(bytes(self.vector))


class AttendanceKind(models.TextChoices):
    CHECK_IN = "check-in", "Check-in"
    CHECK_OUT = "check-out", "Check-out"


class ApprovalStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"
    MODIFIED = "modified", "Modified"


class AttendanceEventQuerySet(models.QuerySet["AttendanceEvent"]):
    def for_day(self, user: User, day) -> "AttendanceEventQuerySet":
        return self.filter(user=user, day=day).order_by("timestamp")

    def between(self, start=None, end=None) -> "AttendanceEventQuerySet":
        """Filter on the local calendar day, both bounds inclusive."""

        queryset = self
        if start is not None:
            queryset = queryset.filter(day__gte=start)
        if end is not None:
            queryset = queryset.filter(day__lte=end)
        return queryset


class AttendanceEvent(models.Model):
    """
    A committed check-in or check-out.

    At most one event of each kind exists per user and local calendar day; the
    ledger checks this before inserting and the unique constraint catches
    concurrent writers. Hours worked are derived from the paired check-in at
    read time and never stored.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="attendance_events",
        help_text="The user this attendance event belongs to.",
    )
    kind = models.CharField(max_length=9, choices=AttendanceKind.choices)
    day = models.DateField(help_text="Local calendar day of the timestamp.", db_index=True)
    timestamp = models.DateTimeField(help_text="Server-assigned commit time.", db_index=True)

    latitude = models.FloatField(
        null=True,
        blank=True,
        validators=[MinValueValidator(-90.0), MaxValueValidator(90.0)],
    )
    longitude = models.FloatField(
        null=True,
        blank=True,
        validators=[MinValueValidator(-180.0), MaxValueValidator(180.0)],
    )
    address = models.CharField(max_length=255, blank=True)

    face_verified = models.BooleanField(default=False)
    confidence = models.FloatField(
        default=0.0,
        validators=[MinValueValidator(0.0), MaxValueValidator(1.0)],
    )
    is_late = models.BooleanField(default=False, help_text="Only meaningful for check-ins.")
    is_early_leave = models.BooleanField(
        default=False, help_text="Only meaningful for check-outs."
    )

    approval_status = models.CharField(
        max_length=8,
        choices=ApprovalStatus.choices,
        default=ApprovalStatus.APPROVED,
    )
    approved_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reviewed_attendance_events",
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.CharField(max_length=200, blank=True)
    notes = models.CharField(max_length=500, blank=True)

    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=255, blank=True)
    device_id = models.CharField(max_length=100, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects: AttendanceEventQuerySet = AttendanceEventQuerySet.as_manager()

    class Meta:
        ordering = ["-timestamp"]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "day", "kind"], name="users_event_user_day_kind_uniq"
            ),
        ]
        indexes = [
            models.Index(fields=["user", "timestamp"], name="users_event_user_ts_idx"),
            models.Index(fields=["kind", "timestamp"], name="users_event_kind_ts_idx"),
            models.Index(fields=["approval_status"], name="users_event_status_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.user.username} - {self.timestamp:%Y-%m-%d %H:%M:%S} - {self.get_kind_display()}"

    @property
    def is_check_in(self) -> bool:
        return self.kind == AttendanceKind.CHECK_IN

    @property
    def location(self) -> Optional[dict]:
        if self.latitude is None or self.longitude is None:
            return None
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address,
        }


class AttendanceAudit(models.Model):
    """Who changed which attendance event through the privileged path, and how."""

    class Action(models.TextChoices):
        UPDATE = "update", "Update"
        DELETE = "delete", "Delete"
        APPROVE = "approve", "Approve"
        REJECT = "reject", "Reject"

    event_id = models.UUIDField(db_index=True)
    owner = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        related_name="attendance_audits",
        help_text="The user the audited event belongs to.",
    )
    actor = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        related_name="performed_attendance_audits",
    )
    action = models.CharField(max_length=7, choices=Action.choices)
    changes = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        actor = self.actor.username if self.actor else "unknown"
        return f"{actor} {self.action} {self.event_id}"
