import pytest

from recognition import notifications
from recognition.errors import FaceNotEnrolled
from recognition.ledger import AttendanceLedger
from recognition.tasks import relay_attendance_notification
from users.models import UserProfile

from tests.support import make_face, make_image, probe_at

pytestmark = pytest.mark.django_db

delivered = []


def collecting_handler(payload):
    delivered.append(payload)


def failing_handler(payload):
    raise RuntimeError("push gateway unavailable")


@pytest.fixture(autouse=True)
def reset_delivered():
    delivered.clear()
    yield
    delivered.clear()


@pytest.fixture
def ledger(clock, fake_extractor):
    fake_extractor.register(1, make_face(probe_at(0.1)))
    return AttendanceLedger(clock=clock, require_liveness=False)


def test_notification_is_sent_after_commit(
    ledger, enrolled_user, settings, django_capture_on_commit_callbacks
):
    settings.ATTENDANCE_NOTIFICATION_HANDLER = "tests.recognition.test_notifications.collecting_handler"
    received = []

    def receiver(sender, event, payload, **kwargs):
        received.append(payload)

    notifications.attendance_committed.connect(receiver)
    try:
        with django_capture_on_commit_callbacks(execute=False) as callbacks:
            event = ledger.record_check_in(enrolled_user, make_image(1))
            assert delivered == []
        for callback in callbacks:
            callback()
    finally:
        notifications.attendance_committed.disconnect(receiver)

    expected = {
        "event_id": str(event.pk),
        "user_id": enrolled_user.pk,
        "kind": "check-in",
        "timestamp": event.timestamp.isoformat(),
    }
    assert received == [expected]
    assert delivered == [expected]


def test_failed_write_schedules_nothing(ledger, user, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks() as callbacks:
        with pytest.raises(FaceNotEnrolled):
            ledger.record_check_in(user, make_image(1))

    assert callbacks == []


def test_receiver_errors_do_not_break_dispatch(
    ledger, enrolled_user, settings, django_capture_on_commit_callbacks
):
    settings.ATTENDANCE_NOTIFICATION_HANDLER = "tests.recognition.test_notifications.collecting_handler"

    def broken_receiver(sender, **kwargs):
        raise ValueError("receiver bug")

    notifications.attendance_committed.connect(broken_receiver)
    try:
        with django_capture_on_commit_callbacks(execute=True):
            ledger.record_check_in(enrolled_user, make_image(1))
    finally:
        notifications.attendance_committed.disconnect(broken_receiver)

    assert len(delivered) == 1


def test_handler_failure_keeps_the_event(
    ledger, enrolled_user, settings, django_capture_on_commit_callbacks
):
    settings.ATTENDANCE_NOTIFICATION_HANDLER = "tests.recognition.test_notifications.failing_handler"

    with django_capture_on_commit_callbacks(execute=True):
        event = ledger.record_check_in(enrolled_user, make_image(1))

    event.refresh_from_db()
    assert event.face_verified is True


def test_disabled_notifications_skip_the_relay(
    ledger, enrolled_user, settings, django_capture_on_commit_callbacks
):
    settings.ATTENDANCE_NOTIFICATION_HANDLER = "tests.recognition.test_notifications.collecting_handler"
    UserProfile.objects.filter(user=enrolled_user).update(notifications_enabled=False)

    with django_capture_on_commit_callbacks(execute=True):
        ledger.record_check_in(enrolled_user, make_image(1))

    assert delivered == []


def test_relay_without_handler_is_skipped(settings):
    settings.ATTENDANCE_NOTIFICATION_HANDLER = ""

    result = relay_attendance_notification.apply(args=[{"event_id": "abc", "kind": "check-in"}])

    assert result.get() == {"event_id": "abc", "status": "skipped"}
