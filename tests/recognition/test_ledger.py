import datetime

import pytest

from recognition.derivations import pair_daily_records
from recognition.errors import (
    AlreadyMarked,
    FaceNotEnrolled,
    FaceNotVerified,
    NotCheckedIn,
    NotPrivileged,
    RecordNotFound,
    StoreConflict,
)
from recognition.ledger import AttendanceLedger, DayState, EventContext, Location
from users.lockout import LockoutGuard
from users.models import ApprovalStatus, AttendanceAudit, AttendanceEvent

from tests.support import enroll, local_datetime, make_face, make_image, probe_at, reference_vector

pytestmark = pytest.mark.django_db

CLOSE_MATCH = 1
GOOD_MATCH = 2
STRANGER = 3


@pytest.fixture
def faces(fake_extractor):
    fake_extractor.register(CLOSE_MATCH, make_face(probe_at(0.1)))
    fake_extractor.register(GOOD_MATCH, make_face(probe_at(0.25)))
    fake_extractor.register(STRANGER, make_face(probe_at(1.5)))
    return fake_extractor


@pytest.fixture
def ledger(clock, faces):
    return AttendanceLedger(clock=clock, require_liveness=False)


def test_full_day_for_an_enrolled_user(ledger, clock, enrolled_user):
    check_in = ledger.record_check_in(
        enrolled_user,
        make_image(CLOSE_MATCH),
        Location(latitude=12.97, longitude=77.59, address="HQ"),
        context=EventContext(ip_address="10.0.0.7", device_id="kiosk-1"),
    )

    assert check_in.kind == "check-in"
    assert check_in.timestamp == local_datetime(2024, 3, 4, 8, 55)
    assert check_in.day == datetime.date(2024, 3, 4)
    assert check_in.confidence == pytest.approx(0.9)
    assert check_in.face_verified is True
    assert check_in.is_late is False
    assert check_in.is_early_leave is False
    assert check_in.location == {"latitude": 12.97, "longitude": 77.59, "address": "HQ"}
    assert ledger.day_state(enrolled_user) is DayState.CHECKED_IN

    with pytest.raises(AlreadyMarked):
        ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH))

    clock.set(local_datetime(2024, 3, 4, 17, 30))
    check_out = ledger.record_check_out(enrolled_user, make_image(GOOD_MATCH))

    assert check_out.confidence == pytest.approx(0.75)
    assert check_out.is_early_leave is False
    assert check_out.is_late is False
    assert ledger.day_state(enrolled_user) is DayState.CHECKED_OUT

    [record] = pair_daily_records(ledger.events_for_day(enrolled_user))
    assert record.hours_worked == pytest.approx(8.58, abs=0.01)
    assert AttendanceEvent.objects.filter(user=enrolled_user).count() == 2


def test_unenrolled_user_cannot_mark_and_lockout_is_untouched(clock, faces, other_user):
    guard = LockoutGuard()
    ledger = AttendanceLedger(clock=clock, require_liveness=False)

    with pytest.raises(FaceNotEnrolled):
        ledger.record_check_in(other_user, make_image(CLOSE_MATCH))

    assert not AttendanceEvent.objects.filter(user=other_user).exists()
    assert guard.state(other_user).failure_count == 0
    assert guard.is_locked(other_user) is False


def test_unverified_face_writes_nothing(ledger, enrolled_user):
    with pytest.raises(FaceNotVerified):
        ledger.record_check_in(enrolled_user, make_image(STRANGER))

    assert ledger.day_state(enrolled_user) is DayState.NO_RECORD


def test_late_check_in_and_early_check_out(ledger, clock, enrolled_user):
    clock.set(local_datetime(2024, 3, 4, 9, 20))
    check_in = ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH))
    clock.set(local_datetime(2024, 3, 4, 15, 0))
    check_out = ledger.record_check_out(enrolled_user, make_image(CLOSE_MATCH))

    assert check_in.is_late is True
    assert check_out.is_early_leave is True


def test_check_out_requires_a_check_in(ledger, clock, enrolled_user):
    clock.set(local_datetime(2024, 3, 4, 17, 5))

    with pytest.raises(NotCheckedIn):
        ledger.record_check_out(enrolled_user, make_image(CLOSE_MATCH))

    assert not AttendanceEvent.objects.exists()


def test_second_check_out_is_rejected(ledger, clock, enrolled_user):
    ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH))
    clock.set(local_datetime(2024, 3, 4, 17, 5))
    ledger.record_check_out(enrolled_user, make_image(CLOSE_MATCH))

    with pytest.raises(AlreadyMarked):
        ledger.record_check_out(enrolled_user, make_image(CLOSE_MATCH))


def test_new_day_starts_from_no_record(ledger, clock, enrolled_user):
    ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH))
    clock.advance(days=1)

    assert ledger.day_state(enrolled_user) is DayState.NO_RECORD
    assert ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH)).day == datetime.date(2024, 3, 5)


def test_unique_constraint_race_is_reported_as_conflict(ledger, enrolled_user, monkeypatch):
    ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH))
    # Simulate a concurrent writer that committed after the duplicate check ran.
    monkeypatch.setattr(AttendanceLedger, "_ensure_transition", lambda *args: None)

    with pytest.raises(StoreConflict) as excinfo:
        ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH))

    assert isinstance(excinfo.value, AlreadyMarked)
    assert AttendanceEvent.objects.filter(user=enrolled_user).count() == 1


def test_liveness_gate_blocks_spoofed_images(clock, faces, enrolled_user):
    faces.register_expressions(CLOSE_MATCH, [0.05, 0.02])
    ledger = AttendanceLedger(clock=clock, require_liveness=True)

    with pytest.raises(FaceNotVerified) as excinfo:
        ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH))

    assert "Liveness" in excinfo.value.message
    assert not AttendanceEvent.objects.exists()

    faces.register_expressions(CLOSE_MATCH, [0.7, 0.3, 0.2])
    assert ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH)).face_verified is True


def test_history_is_filtered_and_newest_first(ledger, clock, enrolled_user):
    for day in (4, 5, 6):
        clock.set(local_datetime(2024, 3, day, 8, 50))
        ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH))

    everything = ledger.history(enrolled_user)
    window = ledger.history(enrolled_user, start=datetime.date(2024, 3, 5), end=datetime.date(2024, 3, 5))

    assert [event.day.day for event in everything] == [6, 5, 4]
    assert [event.day.day for event in window] == [5]
    assert len(ledger.history(enrolled_user, limit=2)) == 2


def test_admin_update_recomputes_flags_and_audits(ledger, clock, enrolled_user, staff_user):
    event = ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH))

    updated = ledger.update_event(
        staff_user,
        event.pk,
        is_privileged=True,
        timestamp=local_datetime(2024, 3, 4, 9, 45),
        notes="Badge reader was down",
    )

    assert updated.is_late is True
    assert updated.approval_status == ApprovalStatus.MODIFIED
    assert updated.notes == "Badge reader was down"
    audit = AttendanceAudit.objects.get(event_id=event.pk)
    assert audit.action == AttendanceAudit.Action.UPDATE
    assert audit.actor == staff_user
    assert audit.owner == enrolled_user
    assert audit.changes["is_late"] == {"old": False, "new": True}
    assert "timestamp" in audit.changes


def test_admin_update_moving_onto_an_existing_event_conflicts(ledger, clock, enrolled_user, staff_user):
    ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH))
    clock.set(local_datetime(2024, 3, 4, 17, 10))
    check_out = ledger.record_check_out(enrolled_user, make_image(CLOSE_MATCH))

    with pytest.raises(StoreConflict):
        ledger.update_event(staff_user, check_out.pk, is_privileged=True, kind="check-in")

    check_out.refresh_from_db()
    assert check_out.kind == "check-out"
    assert not AttendanceAudit.objects.exists()


def test_privileged_operations_require_privilege(ledger, enrolled_user, other_user):
    event = ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH))

    with pytest.raises(NotPrivileged):
        ledger.update_event(other_user, event.pk, is_privileged=False, notes="x")
    with pytest.raises(NotPrivileged):
        ledger.delete_event(other_user, event.pk, is_privileged=False)
    with pytest.raises(NotPrivileged):
        ledger.review_event(other_user, event.pk, is_privileged=False, approved=True)


def test_unknown_event_is_not_found(ledger, staff_user):
    with pytest.raises(RecordNotFound):
        ledger.delete_event(staff_user, "00000000-0000-0000-0000-000000000000", is_privileged=True)
    with pytest.raises(RecordNotFound):
        ledger.get_event("not-a-uuid")


def test_delete_is_audited(ledger, enrolled_user, staff_user):
    event = ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH))

    ledger.delete_event(staff_user, event.pk, is_privileged=True)

    assert not AttendanceEvent.objects.filter(pk=event.pk).exists()
    audit = AttendanceAudit.objects.get(event_id=event.pk)
    assert audit.action == AttendanceAudit.Action.DELETE
    assert audit.changes["kind"] == "check-in"


def test_review_rejects_with_reason(ledger, clock, enrolled_user, staff_user):
    event = ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH))

    reviewed = ledger.review_event(
        staff_user, event.pk, is_privileged=True, approved=False, reason="Not on site"
    )

    assert reviewed.approval_status == ApprovalStatus.REJECTED
    assert reviewed.approved_by == staff_user
    assert reviewed.approved_at == clock.now()
    assert reviewed.rejection_reason == "Not on site"
    assert AttendanceAudit.objects.get(event_id=event.pk).action == AttendanceAudit.Action.REJECT


def test_daily_history_never_splits_a_day(ledger, clock, enrolled_user):
    for day in (4, 5):
        clock.set(local_datetime(2024, 3, day, 8, 55))
        ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH))
        clock.set(local_datetime(2024, 3, day, 17, 30))
        ledger.record_check_out(enrolled_user, make_image(CLOSE_MATCH))

    assert len(ledger.history(enrolled_user, limit=3)) == 3
    records = pair_daily_records(ledger.daily_history(enrolled_user, limit=3))
    newest = pair_daily_records(ledger.daily_history(enrolled_user, limit=1))

    assert [record.day.day for record in records] == [5, 4]
    assert all(record.check_in is not None for record in records)
    assert [record.hours_worked for record in records] == pytest.approx([8.58, 8.58], abs=0.01)
    assert [record.day.day for record in newest] == [5]
    assert newest[0].check_in is not None


def test_events_on_spans_all_users(ledger, clock, enrolled_user, other_user):
    enroll(other_user, reference_vector(0))
    ledger.record_check_in(enrolled_user, make_image(CLOSE_MATCH))
    clock.set(local_datetime(2024, 3, 4, 9, 10))
    ledger.record_check_in(other_user, make_image(CLOSE_MATCH))
    clock.advance(days=1)
    ledger.record_check_in(other_user, make_image(CLOSE_MATCH))

    everyone = ledger.events_on(datetime.date(2024, 3, 4))
    own = ledger.events_on(datetime.date(2024, 3, 4), user=enrolled_user)

    assert [event.user for event in everyone] == [enrolled_user, other_user]
    assert [event.user for event in own] == [enrolled_user]
