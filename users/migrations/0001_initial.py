"""Create profile, face embedding, attendance event and audit tables."""

import uuid

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="UserProfile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "face_enrolled",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the user has a complete set of enrolled face embeddings.",
                    ),
                ),
                ("department", models.CharField(blank=True, max_length=50)),
                ("employee_id", models.CharField(blank=True, max_length=20)),
                ("position", models.CharField(blank=True, max_length=50)),
                (
                    "notifications_enabled",
                    models.BooleanField(
                        default=True,
                        help_text="Relay a notification after each committed attendance event.",
                    ),
                ),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.OneToOneField(
                        help_text="The user these attendance settings belong to.",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="profile",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="FaceEmbedding",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "position",
                    models.PositiveSmallIntegerField(
                        help_text="Zero-based enrollment order of this embedding."
                    ),
                ),
                ("dimension", models.PositiveIntegerField()),
                (
                    "vector",
                    models.BinaryField(help_text="Fernet token of the float64 embedding buffer."),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="face_embeddings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["user_id", "position"],
            },
        ),
        migrations.AddConstraint(
            model_name="faceembedding",
            constraint=models.UniqueConstraint(
                fields=("user", "position"), name="users_embedding_user_position_uniq"
            ),
        ),
        migrations.CreateModel(
            name="AttendanceEvent",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "kind",
                    models.CharField(
                        choices=[("check-in", "Check-in"), ("check-out", "Check-out")],
                        max_length=9,
                    ),
                ),
                (
                    "day",
                    models.DateField(db_index=True, help_text="Local calendar day of the timestamp."),
                ),
                (
                    "timestamp",
                    models.DateTimeField(db_index=True, help_text="Server-assigned commit time."),
                ),
                (
                    "latitude",
                    models.FloatField(
                        blank=True,
                        null=True,
                        validators=[
                            django.core.validators.MinValueValidator(-90.0),
                            django.core.validators.MaxValueValidator(90.0),
                        ],
                    ),
                ),
                (
                    "longitude",
                    models.FloatField(
                        blank=True,
                        null=True,
                        validators=[
                            django.core.validators.MinValueValidator(-180.0),
                            django.core.validators.MaxValueValidator(180.0),
                        ],
                    ),
                ),
                ("address", models.CharField(blank=True, max_length=255)),
                ("face_verified", models.BooleanField(default=False)),
                (
                    "confidence",
                    models.FloatField(
                        default=0.0,
                        validators=[
                            django.core.validators.MinValueValidator(0.0),
                            django.core.validators.MaxValueValidator(1.0),
                        ],
                    ),
                ),
                ("is_late", models.BooleanField(default=False, help_text="Only meaningful for check-ins.")),
                (
                    "is_early_leave",
                    models.BooleanField(default=False, help_text="Only meaningful for check-outs."),
                ),
                (
                    "approval_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                            ("modified", "Modified"),
                        ],
                        default="approved",
                        max_length=8,
                    ),
                ),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("rejection_reason", models.CharField(blank=True, max_length=200)),
                ("notes", models.CharField(blank=True, max_length=500)),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                ("user_agent", models.CharField(blank=True, max_length=255)),
                ("device_id", models.CharField(blank=True, max_length=100)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "approved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="reviewed_attendance_events",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        help_text="The user this attendance event belongs to.",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="attendance_events",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-timestamp"],
            },
        ),
        migrations.AddConstraint(
            model_name="attendanceevent",
            constraint=models.UniqueConstraint(
                fields=("user", "day", "kind"), name="users_event_user_day_kind_uniq"
            ),
        ),
        migrations.AddIndex(
            model_name="attendanceevent",
            index=models.Index(fields=["user", "timestamp"], name="users_event_user_ts_idx"),
        ),
        migrations.AddIndex(
            model_name="attendanceevent",
            index=models.Index(fields=["kind", "timestamp"], name="users_event_kind_ts_idx"),
        ),
        migrations.AddIndex(
            model_name="attendanceevent",
            index=models.Index(fields=["approval_status"], name="users_event_status_idx"),
        ),
        migrations.CreateModel(
            name="AttendanceAudit",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("event_id", models.UUIDField(db_index=True)),
                (
                    "action",
                    models.CharField(
                        choices=[
                            ("update", "Update"),
                            ("delete", "Delete"),
                            ("approve", "Approve"),
                            ("reject", "Reject"),
                        ],
                        max_length=7,
                    ),
                ),
                ("changes", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "actor",
                    models.ForeignKey(
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="performed_attendance_audits",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "owner",
                    models.ForeignKey(
                        help_text="The user the audited event belongs to.",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="attendance_audits",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
