from datetime import datetime
from typing import Dict, FrozenSet, Optional

from queueflow.core.exceptions import CapacityExceeded, InvalidTransition, NoShowTooEarly
from queueflow.core.logger import get_logger
from queueflow.core.utils import minutes_between
from queueflow.models import ClinicQueueDay, EntryStatus, QueueEntry

logger = get_logger("state_machine")

S = EntryStatus

TRANSITIONS: Dict[EntryStatus, FrozenSet[EntryStatus]] = {
    S.scheduled: frozenset({S.checked_in, S.no_show, S.cancelled}),
    S.checked_in: frozenset({S.waiting, S.no_show}),
    S.waiting: frozenset({S.called, S.no_show, S.cancelled}),
    S.called: frozenset({S.in_progress}),
    S.in_progress: frozenset({S.completed}),
    S.no_show: frozenset({S.returned}),
    S.returned: frozenset({S.waiting}),
    S.completed: frozenset(),
    S.cancelled: frozenset(),
}


class QueueStateMachine:
    """
    Owns entry lifecycle legality. Every accepted transition bumps the
    entry's ``queue_version`` and stamps the matching timestamp; a refused
    transition leaves the entry untouched.
    """

    def can_transition(self, current: EntryStatus, target: EntryStatus) -> bool:
        return target in TRANSITIONS[current]

    def expected_call_time(self, entry: QueueEntry) -> Optional[datetime]:
        return entry.scheduled_time or entry.gap_slot_time or entry.estimate.estimated_start or entry.checked_in_at

    def transition(self, day: ClinicQueueDay, entry: QueueEntry, target: EntryStatus, now: datetime) -> QueueEntry:
        if not self.can_transition(entry.status, target):
            raise InvalidTransition(entry.status.value, target.value)

        if target == S.no_show:
            self._check_grace_period(day, entry, now)
        if target == S.in_progress:
            self._check_capacity(day)

        previous = entry.status
        entry.status = target
        if target == S.checked_in:
            entry.checked_in_at = now
        elif target == S.called:
            entry.called_at = now
        elif target == S.in_progress:
            entry.started_at = now
            day.last_service_start_at = now
        elif target == S.completed:
            entry.completed_at = now
        elif target == S.no_show:
            entry.marked_absent_at = now
        elif target == S.returned:
            # Re-registration counts as a fresh arrival
            entry.checked_in_at = now

        entry.queue_version += 1
        logger.debug(f"Entry {entry.id}: {previous.value} -> {target.value} (v{entry.queue_version})")
        return entry

    def advance_to_called(self, day: ClinicQueueDay, entry: QueueEntry, now: datetime) -> QueueEntry:
        if entry.status == S.checked_in:
            self.transition(day, entry, S.waiting, now)
        return self.transition(day, entry, S.called, now)

    def _check_grace_period(self, day: ClinicQueueDay, entry: QueueEntry, now: datetime) -> None:
        expected = self.expected_call_time(entry)
        grace = day.config.graceperiod_minutes
        elapsed = minutes_between(expected, now) if expected else 0.0
        if expected is None or elapsed < grace:
            raise NoShowTooEarly(entry.status.value, elapsed, grace)

    def _check_capacity(self, day: ClinicQueueDay) -> None:
        in_service = sum(1 for e in day.entries if e.status == S.in_progress)
        if in_service >= day.config.active_staff_count:
            raise CapacityExceeded(day.config.active_staff_count)
