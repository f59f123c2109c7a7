from datetime import datetime
from typing import List, NamedTuple, Optional, Sequence, Set

from queueflow.core.logger import get_logger
from queueflow.models import (
    AppointmentType,
    ClinicQueueDay,
    Disruption,
    EntryStatus,
    QueueEntry,
    QueueMode,
    TimeBlock,
)
from queueflow.services.priority_scorer import PriorityScorer

logger = get_logger("strategies")


class PlannedEntry(NamedTuple):
    entry: QueueEntry
    # Earliest moment the entry may be estimated to start, None when ungated
    not_before: Optional[datetime]


def _waiting_line(entries: Sequence[QueueEntry]) -> List[QueueEntry]:
    return [e for e in entries if not e.is_terminal and e.status != EntryStatus.in_progress]


def _called_first(entries: Sequence[QueueEntry]) -> List[QueueEntry]:
    return sorted(
        [e for e in entries if e.status == EntryStatus.called],
        key=lambda e: (e.called_at or datetime.max, e.queue_position),
    )


def _bump(entry: QueueEntry, position: int) -> None:
    if entry.queue_position != position:
        entry.queue_position = position
        entry.queue_version += 1


def _renumber(day: ClinicQueueDay, ordered: Sequence[QueueEntry]) -> None:
    """Give ``ordered`` fresh, ascending positions unless they already are."""
    positions = [e.queue_position for e in ordered]
    if positions == sorted(positions):
        return
    for entry in ordered:
        _bump(entry, day.take_position())


class SlottedStrategy:
    """
    Time is king. Booked times never move; only estimates and statuses do.
    A vacated past slot (no-show or cancellation) is a gap that a walk-in can
    take or that a present, later-booked patient can be called early into.
    """

    name = QueueMode.slotted.value

    def sort_key(self, entry: QueueEntry):
        slot = entry.slot_time
        return (
            slot is None,
            slot or datetime.max,
            entry.checked_in_at or datetime.max,
            entry.queue_position,
        )

    def order(self, entries: Sequence[QueueEntry]) -> List[QueueEntry]:
        called = _called_first(entries)
        rest = sorted([e for e in _waiting_line(entries) if e.status != EntryStatus.called], key=self.sort_key)
        return called + rest

    def plan(self, day: ClinicQueueDay, now: datetime, entries: Optional[Sequence[QueueEntry]] = None) -> List[PlannedEntry]:
        pool = day.entries if entries is None else entries
        return [PlannedEntry(e, e.slot_time) for e in self.order(pool)]

    def open_gaps(self, day: ClinicQueueDay, now: datetime) -> List[QueueEntry]:
        # A gap stays consumed unless the walk-in that took it ended no_show or cancelled
        taken = {
            e.filled_gap_entry_id
            for e in day.entries
            if e.filled_gap_entry_id and e.status not in (EntryStatus.no_show, EntryStatus.cancelled)
        }
        gaps = [
            e for e in day.entries
            if e.status in (EntryStatus.no_show, EntryStatus.cancelled)
            and e.scheduled_time is not None
            and e.scheduled_time <= now
            and e.id not in taken
        ]
        # Nearest to now first
        return sorted(gaps, key=lambda e: (now - e.scheduled_time, e.queue_position))

    def next_callable(self, day: ClinicQueueDay, now: datetime, entries: Optional[Sequence[QueueEntry]] = None) -> Optional[QueueEntry]:
        pool = day.entries if entries is None else entries
        present = [e for e in pool if e.is_present]
        if not present:
            return None

        due = [e for e in present if e.slot_time is not None and e.slot_time <= now]
        if due:
            return min(due, key=self.sort_key)

        booked = [e for e in present if e.slot_time is not None]
        if booked and self.open_gaps(day, now):
            candidate = min(booked, key=self.sort_key)
            logger.info(f"Calling {candidate.id} early into an open gap")
            return candidate

        unslotted = [e for e in present if e.slot_time is None]
        if unslotted:
            return min(unslotted, key=self.sort_key)
        return None

    def on_disruption(self, day: ClinicQueueDay, disruption: Disruption, now: datetime) -> Set[str]:
        line = self.order(day.entries)
        anchor = day.get_entry(disruption.event.affected_entry_id) if disruption.event.affected_entry_id else None
        if anchor is None or anchor.status in (EntryStatus.called, EntryStatus.in_progress, EntryStatus.completed):
            return {e.id for e in line}

        anchor_key = self.sort_key(anchor)
        affected = {e.id for e in line if self.sort_key(e) > anchor_key}
        if not anchor.is_terminal:
            affected.add(anchor.id)
        return affected

    def sync_positions(self, day: ClinicQueueDay, now: datetime, entries: Optional[Sequence[QueueEntry]] = None) -> None:
        # Positions are only a tiebreak here; booked order is never rewritten
        return None

    def admit_walk_in(self, day: ClinicQueueDay, entry: QueueEntry, now: datetime) -> int:
        entry.queue_position = day.take_position()
        gaps = self.open_gaps(day, now)
        if gaps:
            gap = gaps[0]
            entry.gap_slot_time = gap.scheduled_time
            entry.filled_gap_entry_id = gap.id
            logger.info(f"Walk-in {entry.id} takes the {gap.scheduled_time.isoformat()} gap")
        elif entry.appointment_type == AppointmentType.emergency:
            # Emergencies are due immediately instead of joining the tail
            entry.gap_slot_time = now
        day.entries.append(entry)
        return entry.queue_position


class FluidStrategy:
    """
    Flow is king. Present patients are served by priority score and every
    disruption re-ranks and re-estimates the whole active line.
    """

    name = QueueMode.fluid.value

    def __init__(self, scorer: PriorityScorer):
        self.scorer = scorer

    def order(self, entries: Sequence[QueueEntry], now: datetime) -> List[QueueEntry]:
        called = _called_first(entries)
        rest = [e for e in _waiting_line(entries) if e.status != EntryStatus.called]
        return called + self.scorer.rank(rest, now)

    def plan(self, day: ClinicQueueDay, now: datetime, entries: Optional[Sequence[QueueEntry]] = None) -> List[PlannedEntry]:
        pool = day.entries if entries is None else entries
        return [PlannedEntry(e, None) for e in self.order(pool, now)]

    def next_callable(self, day: ClinicQueueDay, now: datetime, entries: Optional[Sequence[QueueEntry]] = None) -> Optional[QueueEntry]:
        pool = day.entries if entries is None else entries
        present = [e for e in pool if e.is_present]
        if not present:
            return None
        return self.scorer.rank(present, now)[0]

    def on_disruption(self, day: ClinicQueueDay, disruption: Disruption, now: datetime) -> Set[str]:
        return {e.id for e in _waiting_line(day.entries)}

    def sync_positions(self, day: ClinicQueueDay, now: datetime, entries: Optional[Sequence[QueueEntry]] = None) -> None:
        pool = day.entries if entries is None else entries
        _renumber(day, self.order(pool, now))

    def admit_walk_in(self, day: ClinicQueueDay, entry: QueueEntry, now: datetime) -> int:
        entry.queue_position = day.take_position()
        day.entries.append(entry)
        self.sync_positions(day, now)
        return entry.queue_position

    def place_between_neighbours(self, day: ClinicQueueDay, entry: QueueEntry, index: int, now: datetime) -> None:
        """Manual move: shift the entry's score so it ranks at ``index``."""
        others = [e for e in self.order(day.entries, now) if e.id != entry.id and e.status != EntryStatus.called]
        index = max(0, min(index, len(others)))
        base = self.scorer.score(entry, now) - entry.priority_adjustment
        above = self.scorer.score(others[index - 1], now) if index > 0 else None
        below = self.scorer.score(others[index], now) if index < len(others) else None

        if above is not None and below is not None:
            target = (above + below) / 2
        elif above is not None:
            target = above - 1.0
        elif below is not None:
            target = below + 1.0
        else:
            target = base
        entry.priority_adjustment = target - base


class HybridStrategy:
    """
    Not a third behaviour: a scheduler that hands each instant to the block
    that contains it. Entries left over from an ended block are carried into
    the running block and follow its rules from then on; entries booked into
    a block that has not started yet wait behind them with that block's gating.
    """

    name = "hybrid"

    def __init__(self, slotted: SlottedStrategy, fluid: FluidStrategy, default_mode: QueueMode):
        self.slotted = slotted
        self.fluid = fluid
        self.default_mode = default_mode

    def strategy_at(self, day: ClinicQueueDay, now: datetime):
        mode = day.mode_at(now)
        return self.slotted if mode == QueueMode.slotted else self.fluid

    def _future_block(self, day: ClinicQueueDay, entry: QueueEntry, now: datetime) -> Optional[TimeBlock]:
        if entry.scheduled_time is None:
            return None
        block = day.block_at(entry.scheduled_time)
        if block is not None and block.start > now:
            return block
        return None

    def split(self, day: ClinicQueueDay, now: datetime):
        carried, upcoming = [], []
        for entry in day.entries:
            if entry.status != EntryStatus.called and self._future_block(day, entry, now):
                upcoming.append(entry)
            else:
                carried.append(entry)
        return carried, upcoming

    def plan(self, day: ClinicQueueDay, now: datetime, entries: Optional[Sequence[QueueEntry]] = None) -> List[PlannedEntry]:
        carried, upcoming = self.split(day, now)
        plan = self.strategy_at(day, now).plan(day, now, carried)

        later = []
        for entry in _waiting_line(upcoming):
            block = self._future_block(day, entry, now)
            not_before = entry.scheduled_time if block.mode == QueueMode.slotted else block.start
            later.append(PlannedEntry(entry, not_before))
        later.sort(key=lambda p: (p.entry.scheduled_time, p.entry.queue_position))
        return plan + later

    def next_callable(self, day: ClinicQueueDay, now: datetime, entries: Optional[Sequence[QueueEntry]] = None) -> Optional[QueueEntry]:
        carried, _ = self.split(day, now)
        return self.strategy_at(day, now).next_callable(day, now, carried)

    def on_disruption(self, day: ClinicQueueDay, disruption: Disruption, now: datetime) -> Set[str]:
        return self.strategy_at(day, now).on_disruption(day, disruption, now)

    def sync_positions(self, day: ClinicQueueDay, now: datetime, entries: Optional[Sequence[QueueEntry]] = None) -> None:
        carried, _ = self.split(day, now)
        self.strategy_at(day, now).sync_positions(day, now, carried)

    def admit_walk_in(self, day: ClinicQueueDay, entry: QueueEntry, now: datetime) -> int:
        return self.strategy_at(day, now).admit_walk_in(day, entry, now)


def resolve_strategy(day: ClinicQueueDay):
    """Pick the strategy object for a clinic day's configuration."""
    scorer = PriorityScorer(day.config.priority_weights)
    slotted = SlottedStrategy()
    fluid = FluidStrategy(scorer)
    if day.config.blocks:
        return HybridStrategy(slotted, fluid, day.config.mode)
    if day.config.mode == QueueMode.slotted:
        return slotted
    return fluid
