from queueflow.models import (
    AppointmentType,
    DisruptionEvent,
    DisruptionKind,
    EntryStatus,
    EventKind,
)
from queueflow.services.disruption_detector import DisruptionDetector
from tests.factories import at, make_config, make_day, make_entry


def event(kind: EventKind, observed_at, entry_id=None, **payload) -> DisruptionEvent:
    return DisruptionEvent(kind=kind, clinic_day_id="day-1", affected_entry_id=entry_id, observed_at=observed_at, payload=payload)


def kinds(found):
    return [d.kind for d in found]


def test_late_arrival_beyond_threshold():
    entry = make_entry("e1", at(10), status=EntryStatus.checked_in, checked_in_at=at(10, 8))
    day = make_day(make_config(late_threshold_minutes=5), entries=[entry])

    found = DisruptionDetector().classify(day, event(EventKind.checked_in_late, at(10, 8), "e1"))

    assert kinds(found) == [DisruptionKind.late_arrival]
    assert found[0].entry_ids == ["e1"]


def test_arrival_within_threshold_is_not_a_disruption():
    entry = make_entry("e1", at(10), status=EntryStatus.checked_in, checked_in_at=at(10, 3))
    day = make_day(make_config(late_threshold_minutes=5), entries=[entry])

    assert DisruptionDetector().classify(day, event(EventKind.checked_in_late, at(10, 3), "e1")) == []


def test_absent_and_returned():
    absent = make_entry("a", at(10), status=EntryStatus.no_show, marked_absent_at=at(10, 10))
    back = make_entry("b", at(10), status=EntryStatus.waiting, marked_absent_at=at(10, 10), checked_in_at=at(10, 40))
    day = make_day(entries=[absent, back])
    detector = DisruptionDetector()

    assert kinds(detector.classify(day, event(EventKind.marked_absent, at(10, 10), "a"))) == [DisruptionKind.absent]
    assert kinds(detector.classify(day, event(EventKind.returned_after_absent, at(10, 40), "b"))) == [DisruptionKind.returned]


def test_duration_variance_in_both_directions():
    over = make_entry("over", status=EntryStatus.completed, actual_duration_minutes=30)
    under = make_entry("under", status=EntryStatus.completed, actual_duration_minutes=3)
    close = make_entry("close", status=EntryStatus.completed, actual_duration_minutes=20)
    day = make_day(make_config(duration_overrun_threshold_minutes=10), entries=[over, under, close])
    detector = DisruptionDetector()

    assert kinds(detector.classify(day, event(EventKind.duration_completed, at(11), "over"))) == [DisruptionKind.duration_overrun]
    assert kinds(detector.classify(day, event(EventKind.duration_completed, at(11), "under"))) == [DisruptionKind.duration_underrun]
    assert detector.classify(day, event(EventKind.duration_completed, at(11), "close")) == []


def test_inserted_walk_in_is_an_emergency_insert():
    walk_in = make_entry("w", appointment_type=AppointmentType.walk_in, status=EntryStatus.waiting)
    day = make_day(entries=[walk_in])

    found = DisruptionDetector().classify(day, event(EventKind.entry_inserted, at(10), "w"))

    assert kinds(found) == [DisruptionKind.emergency_insert]


def test_staff_count_change_is_a_staff_gap():
    day = make_day()

    found = DisruptionDetector().classify(day, event(EventKind.staff_unavailable, at(10), active_staff_count=0))

    assert kinds(found) == [DisruptionKind.staff_gap]
    assert found[0].entry_ids == []


def test_idle_staff_with_patients_waiting_is_a_staff_gap():
    waiting = make_entry("w", at(9), status=EntryStatus.waiting, checked_in_at=at(9))
    day = make_day(make_config(staff_idle_window_minutes=20), entries=[waiting])
    day.last_service_start_at = at(9, 5)
    detector = DisruptionDetector()

    assert detector.classify(day, event(EventKind.periodic_overrun_check, at(9, 20))) == []
    assert kinds(detector.classify(day, event(EventKind.periodic_overrun_check, at(9, 30)))) == [DisruptionKind.staff_gap]


def test_running_over_is_detected_before_completion():
    running = make_entry("r", at(10), status=EntryStatus.in_progress, started_at=at(10))
    day = make_day(make_config(duration_overrun_threshold_minutes=10), entries=[running])
    detector = DisruptionDetector()

    assert detector.classify(day, event(EventKind.periodic_overrun_check, at(10, 20))) == []
    found = detector.classify(day, event(EventKind.periodic_overrun_check, at(10, 30)))
    assert kinds(found) == [DisruptionKind.duration_overrun]
    assert found[0].entry_ids == ["r"]


def test_detector_does_not_modify_the_day():
    entry = make_entry("e1", at(10), status=EntryStatus.checked_in, checked_in_at=at(10, 30))
    day = make_day(entries=[entry])
    before = day.model_dump()

    DisruptionDetector().classify(day, event(EventKind.checked_in_late, at(10, 30), "e1"))

    assert day.model_dump() == before
