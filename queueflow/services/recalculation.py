from datetime import datetime
from typing import List, NamedTuple, Optional, Set

from queueflow.core.logger import get_logger
from queueflow.core.utils import add_minutes, minutes_between
from queueflow.models import ClinicQueueDay, EntryStatus, Estimate, EstimateBasis
from queueflow.services.strategies import resolve_strategy

logger = get_logger("recalculation")


class RecalculationResult(NamedTuple):
    updated_entry_ids: List[str]
    drift_minutes: float
    strategy: str


class RecalculationEngine:
    """
    Recomputes displayed start estimates as a fold over the ordered line.

    The fold always walks every active entry so the running clock is right,
    but only entries in ``affected`` receive new estimates. Running it twice
    on the same state and ``now`` changes nothing the second time.
    """

    def seed(self, day: ClinicQueueDay, now: datetime) -> datetime:
        in_service = [e for e in day.entries if e.status == EntryStatus.in_progress]
        if len(in_service) < day.config.active_staff_count:
            return now
        ends = [
            add_minutes(e.started_at or now, e.estimated_duration_minutes)
            for e in in_service
        ]
        if not ends:
            return now
        return max(now, min(ends))

    def recalculate(self, day: ClinicQueueDay, now: datetime, affected: Optional[Set[str]] = None, strategy=None) -> RecalculationResult:
        strategy = strategy or resolve_strategy(day)
        plan = strategy.plan(day, now)
        lanes = max(1, day.config.active_staff_count)

        available_from = self.seed(day, now)
        confidence_ahead = 1.0
        updated: List[str] = []
        drift = 0.0

        for entry, not_before in plan:
            start = available_from
            if not_before is not None and not_before > start:
                start = not_before

            if affected is None or entry.id in affected:
                shift = self._apply(entry, start, confidence_ahead, now)
                if shift is not None:
                    updated.append(entry.id)
                    drift += shift

            available_from = add_minutes(start, entry.estimated_duration_minutes / lanes)
            confidence_ahead = min(confidence_ahead, entry.duration_confidence)

        strategy.sync_positions(day, now)

        day.cumulative_delay_minutes += drift
        day.last_recalculated_at = now
        logger.info(
            f"Clinic day {day.id}: {strategy.name} pass at {now.isoformat()} updated "
            f"{len(updated)} of {len(plan)} entries, drift {drift:+.1f} min"
        )
        return RecalculationResult(updated, drift, strategy.name)

    def _apply(self, entry, start: datetime, confidence: float, now: datetime) -> Optional[float]:
        current = entry.estimate
        if (
            current.estimated_start == start
            and current.confidence == confidence
            and current.basis == EstimateBasis.recalculated
        ):
            return None

        shift = minutes_between(current.estimated_start, start) if current.estimated_start else 0.0
        entry.estimate = Estimate(
            estimated_start=start,
            confidence=confidence,
            basis=EstimateBasis.recalculated,
            last_updated_at=now,
        )
        entry.queue_version += 1
        return shift
