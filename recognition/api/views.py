"""REST endpoints for enrollment, verification, liveness and attendance."""

import logging

from django.conf import settings
from django.contrib.auth import get_user_model

from django_ratelimit.core import is_ratelimited
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from recognition.derivations import pair_daily_records
from recognition.enrollment import clear_enrollment, enroll_user
from recognition.errors import NotPrivileged, RateLimited, RecordNotFound
from recognition.images import decode_base64_image
from recognition.ledger import AttendanceLedger, EventContext
from recognition.liveness import LivenessGate
from recognition.verification import verify_user_face
from src.common import client_ip, user_agent
from users.models import UserProfile

from .serializers import (
    AttendanceEventSerializer,
    AttendanceUpdateSerializer,
    DailyRecordSerializer,
    DayQuerySerializer,
    FaceEnrollSerializer,
    HistoryQuerySerializer,
    ImageSerializer,
    LocationSerializer,
    MarkAttendanceSerializer,
    ReviewSerializer,
)

logger = logging.getLogger(__name__)

User = get_user_model()


def is_privileged(user) -> bool:
    return bool(user.is_staff or user.is_superuser)


def ensure_attendance_rate_limit(request) -> None:
    """Apply django-ratelimit protection to the attendance marking endpoint."""

    rate = getattr(settings, "RECOGNITION_ATTENDANCE_RATE_LIMIT", "5/m")
    if not rate:
        return

    was_limited = is_ratelimited(
        request=request,
        group="recognition.attendance",
        key="user_or_ip",
        rate=rate,
        method=["POST"],
        increment=True,
    )
    if was_limited:
        logger.warning(
            "Attendance rate limit triggered for %s via %s",
            request.user if request.user.is_authenticated else client_ip(request),
            request.method,
        )
        raise RateLimited("Too many attendance attempts. Please wait.")


class FaceEnrollView(APIView):
    """Enroll (POST) or remove (DELETE) the caller's face embeddings."""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = FaceEnrollSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        images = [decode_base64_image(payload) for payload in serializer.validated_data["images"]]

        result = enroll_user(request.user, images)
        return Response(
            {
                "message": "Face registered successfully",
                "enrolled": result.enrolled_count,
                "rejected": [
                    {"index": item.index, "reason": item.reason} for item in result.rejected
                ],
            },
            status=status.HTTP_201_CREATED,
        )

    def delete(self, request):
        removed = clear_enrollment(request.user)
        return Response({"message": "Face data removed", "removed": removed})


class FaceVerifyView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = ImageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        image = decode_base64_image(serializer.validated_data["image"])

        result = verify_user_face(request.user, image)
        return Response(result.as_dict())


class LivenessView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = ImageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        image = decode_base64_image(serializer.validated_data["image"])

        result = LivenessGate().check(image)
        return Response(result.as_dict())


class AttendanceViewSet(viewsets.ViewSet):
    """
    Attendance history, marking and administrative corrections.

    Regular users only ever see their own events. Staff may read any user's
    history and correct, delete or review individual events.
    """

    permission_classes = [permissions.IsAuthenticated]
    ledger_class = AttendanceLedger

    def get_ledger(self) -> AttendanceLedger:
        return self.ledger_class()

    def _history_subject(self, request, user_id):
        if user_id is None or user_id == request.user.pk:
            return request.user
        if not is_privileged(request.user):
            raise NotPrivileged()
        subject = User.objects.filter(pk=user_id).first()
        if subject is None:
            raise RecordNotFound("User not found.")
        return subject

    def list(self, request):
        query = HistoryQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        params = query.validated_data

        subject = self._history_subject(request, params.get("user_id"))
        events = self.get_ledger().history(
            subject, start=params.get("start_date"), end=params.get("end_date")
        )
        return Response(AttendanceEventSerializer(events, many=True).data)

    def retrieve(self, request, pk=None):
        event = self.get_ledger().get_event(pk)
        if event.user_id != request.user.pk and not is_privileged(request.user):
            # Other users' events are reported as missing.
            raise RecordNotFound()
        return Response(AttendanceEventSerializer(event).data)

    def partial_update(self, request, pk=None):
        serializer = AttendanceUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        location = None
        if "location" in data:
            location = LocationSerializer().to_location(data["location"])

        event = self.get_ledger().update_event(
            request.user,
            pk,
            is_privileged=is_privileged(request.user),
            kind=data.get("type"),
            timestamp=data.get("timestamp"),
            location=location,
            notes=data.get("notes"),
        )
        return Response(AttendanceEventSerializer(event).data)

    def destroy(self, request, pk=None):
        self.get_ledger().delete_event(request.user, pk, is_privileged=is_privileged(request.user))
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"])
    def review(self, request, pk=None):
        serializer = ReviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        event = self.get_ledger().review_event(
            request.user,
            pk,
            is_privileged=is_privileged(request.user),
            approved=serializer.validated_data["approved"],
            reason=serializer.validated_data.get("reason", ""),
        )
        return Response(AttendanceEventSerializer(event).data)

    @action(detail=False, methods=["post"])
    def mark(self, request):
        """
        Mark a check-in or check-out for the caller after face verification.

        Accepts:
        - type: 'check-in' or 'check-out'
        - image: Base64-encoded face image
        - location: optional latitude/longitude/address
        """
        ensure_attendance_rate_limit(request)

        serializer = MarkAttendanceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        image = decode_base64_image(data["image"])
        location = None
        if data.get("location"):
            location = LocationSerializer().to_location(data["location"])
        context = EventContext(
            ip_address=client_ip(request) if request.META.get("REMOTE_ADDR") else None,
            user_agent=user_agent(request),
            device_id=data.get("device_id", ""),
            notes=data.get("notes", ""),
        )

        event = self.get_ledger().record(
            data["type"], request.user, image, location, context=context
        )
        label = "Check-in" if event.is_check_in else "Check-out"
        return Response(
            {
                "message": f"{label} recorded successfully",
                "attendance": AttendanceEventSerializer(event).data,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=False, methods=["get"])
    def today(self, request):
        ledger = self.get_ledger()
        events = ledger.events_for_day(request.user)
        profile = UserProfile.for_user(request.user)
        return Response(
            {
                "state": ledger.day_state(request.user).value,
                "face_enrolled": profile.face_enrolled,
                "events": AttendanceEventSerializer(events, many=True).data,
            }
        )

    @action(detail=False, methods=["get"])
    def daily(self, request):
        """Check-ins paired with check-outs per day, including hours worked."""

        query = HistoryQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        params = query.validated_data

        subject = self._history_subject(request, params.get("user_id"))
        events = self.get_ledger().daily_history(
            subject, start=params.get("start_date"), end=params.get("end_date")
        )
        records = pair_daily_records(events)
        return Response(DailyRecordSerializer(records, many=True).data)

    @action(detail=False, methods=["get"], url_path=r"date/(?P<day>[0-9]{4}-[0-9]{2}-[0-9]{2})")
    def date(self, request, day=None):
        """Events of one local day: every user's for staff, the caller's own otherwise."""

        query = DayQuerySerializer(data={"date": day})
        query.is_valid(raise_exception=True)

        subject = None if is_privileged(request.user) else request.user
        events = self.get_ledger().events_on(query.validated_data["date"], user=subject)
        return Response(AttendanceEventSerializer(events, many=True).data)
