from django.contrib.auth import get_user_model

from rest_framework import serializers

from recognition.derivations import is_trusted, status_label
from recognition.ledger import Location
from users.models import AttendanceEvent, AttendanceKind

User = get_user_model()


class ImageSerializer(serializers.Serializer):
    """A single base64-encoded face image (plain or data URL)."""

    image = serializers.CharField(trim_whitespace=True)


class FaceEnrollSerializer(serializers.Serializer):
    images = serializers.ListField(child=serializers.CharField(), allow_empty=False)


class LocationSerializer(serializers.Serializer):
    latitude = serializers.FloatField(min_value=-90.0, max_value=90.0)
    longitude = serializers.FloatField(min_value=-180.0, max_value=180.0)
    address = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")

    def to_location(self, data) -> Location:
        return Location(
            latitude=data["latitude"],
            longitude=data["longitude"],
            address=data.get("address", ""),
        )


class MarkAttendanceSerializer(serializers.Serializer):
    """Payload of ``POST attendance/mark/``."""

    type = serializers.ChoiceField(choices=AttendanceKind.choices)
    image = serializers.CharField()
    location = LocationSerializer(required=False, allow_null=True)
    notes = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")
    device_id = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")


class AttendanceUpdateSerializer(serializers.Serializer):
    """Fields an administrator may correct on an existing event."""

    type = serializers.ChoiceField(choices=AttendanceKind.choices, required=False)
    timestamp = serializers.DateTimeField(required=False)
    location = LocationSerializer(required=False)
    notes = serializers.CharField(max_length=500, required=False, allow_blank=True)


class ReviewSerializer(serializers.Serializer):
    approved = serializers.BooleanField()
    reason = serializers.CharField(max_length=200, required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if not attrs["approved"] and not attrs.get("reason"):
            raise serializers.ValidationError({"reason": "A reason is required when rejecting."})
        return attrs


class HistoryQuerySerializer(serializers.Serializer):
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)
    user_id = serializers.IntegerField(required=False, min_value=1)

    def validate(self, attrs):
        start, end = attrs.get("start_date"), attrs.get("end_date")
        if start and end and start > end:
            raise serializers.ValidationError({"end_date": "Must not be before start_date."})
        return attrs


class DayQuerySerializer(serializers.Serializer):
    date = serializers.DateField()


class AttendanceEventSerializer(serializers.ModelSerializer):
    """Serializer for committed attendance events."""

    username = serializers.CharField(source="user.username", read_only=True)
    type = serializers.CharField(source="kind", read_only=True)
    location = serializers.SerializerMethodField()
    status = serializers.SerializerMethodField()
    trusted = serializers.SerializerMethodField()

    class Meta:
        model = AttendanceEvent
        fields = [
            "id",
            "user",
            "username",
            "type",
            "day",
            "timestamp",
            "location",
            "face_verified",
            "confidence",
            "is_late",
            "is_early_leave",
            "approval_status",
            "status",
            "trusted",
            "approved_by",
            "approved_at",
            "rejection_reason",
            "notes",
            "device_id",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_location(self, obj):
        return obj.location

    def get_status(self, obj):
        return status_label(obj)

    def get_trusted(self, obj):
        return is_trusted(obj)


class DailyRecordSerializer(serializers.Serializer):
    day = serializers.DateField()
    check_in = AttendanceEventSerializer(allow_null=True)
    check_out = AttendanceEventSerializer(allow_null=True)
    hours_worked = serializers.SerializerMethodField()
    is_late = serializers.BooleanField()
    is_early_leave = serializers.BooleanField()

    def get_hours_worked(self, obj):
        return round(obj.hours_worked, 2)
