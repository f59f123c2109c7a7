from datetime import datetime
from typing import List, Sequence, Tuple

from queueflow.core.utils import minutes_between
from queueflow.models import AppointmentType, PriorityWeights, QueueEntry


class PriorityScorer:
    """
    Fluid-mode ranking.

    score = w1 * waiting minutes + w2 * type weight + w3 * punctuality
            + emergency boost (emergencies only) + manual adjustment
    """

    def __init__(self, weights: PriorityWeights):
        self.weights = weights

    def waiting_minutes(self, entry: QueueEntry, now: datetime) -> float:
        if entry.checked_in_at is None:
            return 0.0
        return max(0.0, minutes_between(entry.checked_in_at, now))

    def score(self, entry: QueueEntry, now: datetime) -> float:
        w = self.weights
        total = w.w1 * self.waiting_minutes(entry, now)
        total += w.w2 * w.type_weights.get(entry.appointment_type, 0.0)
        total += w.w3 * entry.punctuality_score
        if entry.appointment_type == AppointmentType.emergency:
            total += w.emergency_boost
        return total + entry.priority_adjustment

    def sort_key(self, entry: QueueEntry, now: datetime) -> Tuple:
        # Higher score first, then earliest check-in (absent people last), then position
        return (
            -self.score(entry, now),
            entry.checked_in_at is None,
            entry.checked_in_at or datetime.max,
            entry.queue_position,
        )

    def rank(self, entries: Sequence[QueueEntry], now: datetime) -> List[QueueEntry]:
        return sorted(entries, key=lambda e: self.sort_key(e, now))
