from enum import Enum


class AppointmentType(str, Enum):
    consultation = "consultation"
    follow_up = "follow_up"
    emergency = "emergency"
    walk_in = "walk_in"


class EntryStatus(str, Enum):
    scheduled = "scheduled"
    checked_in = "checked_in"
    waiting = "waiting"
    called = "called"
    in_progress = "in_progress"
    completed = "completed"
    no_show = "no_show"
    cancelled = "cancelled"
    returned = "returned"


TERMINAL_STATUSES = frozenset({EntryStatus.completed, EntryStatus.no_show, EntryStatus.cancelled})
PRESENT_STATUSES = frozenset({EntryStatus.checked_in, EntryStatus.waiting})


class QueueMode(str, Enum):
    slotted = "slotted"
    fluid = "fluid"


class EstimateBasis(str, Enum):
    scheduled = "scheduled"
    recalculated = "recalculated"


class EventKind(str, Enum):
    checked_in_late = "checked_in_late"
    marked_absent = "marked_absent"
    returned_after_absent = "returned_after_absent"
    duration_completed = "duration_completed"
    manual_position_change = "manual_position_change"
    entry_inserted = "entry_inserted"
    staff_unavailable = "staff_unavailable"
    periodic_overrun_check = "periodic_overrun_check"


class DisruptionKind(str, Enum):
    late_arrival = "late_arrival"
    absent = "absent"
    returned = "returned"
    duration_overrun = "duration_overrun"
    duration_underrun = "duration_underrun"
    manual_reorder = "manual_reorder"
    emergency_insert = "emergency_insert"
    staff_gap = "staff_gap"


class DisruptionFlag(str, Enum):
    """Disruption kinds that can be attributed to a single entry."""

    late_arrival = "late_arrival"
    absent_recovered = "absent_recovered"
    duration_overrun = "duration_overrun"
    duration_underrun = "duration_underrun"
    manual_reorder = "manual_reorder"
    emergency_insert = "emergency_insert"
