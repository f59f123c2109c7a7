from datetime import datetime
from typing import List, Optional

from queueflow.core.logger import get_logger
from queueflow.core.utils import minutes_between
from queueflow.models import (
    AppointmentType,
    ClinicQueueDay,
    Disruption,
    DisruptionEvent,
    DisruptionFlag,
    DisruptionKind,
    EntryStatus,
    EventKind,
    QueueEntry,
)

logger = get_logger("disruption_detector")

# Per-entry flag recorded for each classification, where one applies
FLAG_FOR_KIND = {
    DisruptionKind.late_arrival: DisruptionFlag.late_arrival,
    DisruptionKind.returned: DisruptionFlag.absent_recovered,
    DisruptionKind.duration_overrun: DisruptionFlag.duration_overrun,
    DisruptionKind.duration_underrun: DisruptionFlag.duration_underrun,
    DisruptionKind.manual_reorder: DisruptionFlag.manual_reorder,
    DisruptionKind.emergency_insert: DisruptionFlag.emergency_insert,
}


class DisruptionDetector:
    """
    Classifies an event against the clinic day's thresholds. Reads state,
    never writes it: an empty result means "no disruption, no recalculation".
    """

    def classify(self, day: ClinicQueueDay, event: DisruptionEvent) -> List[Disruption]:
        entry = day.get_entry(event.affected_entry_id) if event.affected_entry_id else None
        kind = event.kind

        if kind == EventKind.checked_in_late:
            found = self._late_arrival(day, event, entry)
        elif kind == EventKind.marked_absent:
            found = self._absent(event, entry)
        elif kind == EventKind.returned_after_absent:
            found = self._returned(event, entry)
        elif kind == EventKind.duration_completed:
            found = self._duration_variance(day, event, entry)
        elif kind == EventKind.manual_position_change:
            found = self._reordered(day, event, entry)
        elif kind == EventKind.entry_inserted:
            found = self._inserted(event, entry)
        elif kind == EventKind.staff_unavailable:
            found = self._staff_unavailable(day, event)
        elif kind == EventKind.periodic_overrun_check:
            found = self._running_over(day, event) + self._staff_gap(day, event)
        else:
            found = []

        for disruption in found:
            logger.info(f"Clinic day {day.id}: {disruption.kind.value} ({disruption.reason})")
        return found

    def _make(self, kind: DisruptionKind, event: DisruptionEvent, entry: Optional[QueueEntry], reason: str) -> Disruption:
        return Disruption(kind=kind, event=event, entry_ids=[entry.id] if entry else [], reason=reason)

    def _late_arrival(self, day, event, entry) -> List[Disruption]:
        if entry is None or entry.scheduled_time is None or entry.checked_in_at is None:
            return []
        lateness = minutes_between(entry.scheduled_time, entry.checked_in_at)
        if lateness > day.config.late_threshold_minutes:
            return [self._make(DisruptionKind.late_arrival, event, entry, f"Arrived {lateness:.0f} min late")]
        return []

    def _absent(self, event, entry) -> List[Disruption]:
        if entry is None or entry.status != EntryStatus.no_show:
            return []
        return [self._make(DisruptionKind.absent, event, entry, "Patient was marked absent")]

    def _returned(self, event, entry) -> List[Disruption]:
        if entry is None or entry.marked_absent_at is None or entry.is_terminal:
            return []
        return [self._make(DisruptionKind.returned, event, entry, "Patient returned after being absent")]

    def _reordered(self, day, event, entry) -> List[Disruption]:
        if entry is None:
            return []
        payload = event.payload
        disruption = self._make(DisruptionKind.manual_reorder, event, entry, "Queue position changed by staff")
        if payload.get("swap_with"):
            other = day.get_entry(payload["swap_with"])
            if other is not None:
                disruption.entry_ids.append(other.id)
            disruption.reason = f"Swapped with {payload['swap_with']} by staff"
        elif payload.get("boost_points"):
            disruption.reason = f"Priority boosted by {payload['boost_points']:g} points"
        return [disruption]

    def _duration_variance(self, day, event, entry) -> List[Disruption]:
        if entry is None:
            return []
        actual = entry.actual_duration_minutes
        if actual is None:
            actual = event.payload.get("actual_duration_minutes")
        if actual is None:
            return []

        threshold = day.config.duration_overrun_threshold_minutes
        difference = actual - entry.estimated_duration_minutes
        if difference > threshold:
            return [self._make(DisruptionKind.duration_overrun, event, entry, f"Took {difference:.0f} min longer than expected")]
        if -difference > threshold:
            return [self._make(DisruptionKind.duration_underrun, event, entry, f"Took {-difference:.0f} min less than expected")]
        return []

    def _inserted(self, event, entry) -> List[Disruption]:
        if entry is None:
            return []
        if entry.appointment_type in (AppointmentType.emergency, AppointmentType.walk_in):
            return [self._make(DisruptionKind.emergency_insert, event, entry, f"{entry.appointment_type.value} inserted")]
        return []

    def _staff_unavailable(self, day, event) -> List[Disruption]:
        if "active_staff_count" in event.payload:
            return [self._make(DisruptionKind.staff_gap, event, None, f"Active staff now {day.config.active_staff_count}")]
        return self._staff_gap(day, event)

    def _staff_gap(self, day: ClinicQueueDay, event: DisruptionEvent) -> List[Disruption]:
        now = event.observed_at
        hours = day.config.operating_hours
        if not hours.contains(now):
            return []
        if any(e.status == EntryStatus.in_progress for e in day.entries):
            return []
        if not any(e.is_present for e in day.entries):
            return []

        last_start = day.last_service_start_at or hours.start
        idle = minutes_between(last_start, now)
        if idle > day.config.staff_idle_window_minutes:
            return [self._make(DisruptionKind.staff_gap, event, None, f"No service started for {idle:.0f} min")]
        return []

    def _running_over(self, day: ClinicQueueDay, event: DisruptionEvent) -> List[Disruption]:
        now = event.observed_at
        threshold = day.config.duration_overrun_threshold_minutes
        found = []
        for entry in day.entries:
            if entry.status != EntryStatus.in_progress or entry.started_at is None:
                continue
            over = minutes_between(entry.started_at, now) - entry.estimated_duration_minutes
            if over > threshold:
                found.append(self._make(DisruptionKind.duration_overrun, event, entry, f"Running {over:.0f} min over"))
        return found
