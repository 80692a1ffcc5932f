"""
Admin site configuration for the users app.

Profiles are editable. Attendance events and audits are read-only here: every
change to an attendance event must go through the ledger so it is audited.
"""

from django.contrib import admin

from .models import AttendanceAudit, AttendanceEvent, FaceEmbedding, UserProfile


@admin.register(UserProfile)
class UserProfileAdmin(admin.ModelAdmin):
    """Admin configuration for attendance profiles."""

    list_display = ("user", "employee_id", "department", "face_enrolled", "updated_at")
    list_filter = ("face_enrolled", "department")
    search_fields = ("user__username", "employee_id", "department")
    readonly_fields = ("face_enrolled", "updated_at")


@admin.register(FaceEmbedding)
class FaceEmbeddingAdmin(admin.ModelAdmin):
    list_display = ("user", "position", "dimension", "created_at")
    search_fields = ("user__username",)
    exclude = ("vector",)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(AttendanceEvent)
class AttendanceEventAdmin(ReadOnlyAdmin):
    """Read-only view of committed check-ins and check-outs."""

    list_display = (
        "timestamp",
        "user",
        "kind",
        "confidence",
        "is_late",
        "is_early_leave",
        "approval_status",
    )
    list_filter = ("kind", "approval_status", "is_late", "is_early_leave")
    search_fields = ("user__username", "address")
    date_hierarchy = "day"


@admin.register(AttendanceAudit)
class AttendanceAuditAdmin(ReadOnlyAdmin):
    list_display = ("created_at", "actor", "action", "owner", "event_id")
    list_filter = ("action",)
    search_fields = ("actor__username", "owner__username", "event_id")
