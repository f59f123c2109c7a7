from datetime import date, datetime
from typing import Callable, List, Optional, Tuple
from uuid import uuid4

from queueflow.core.clock import SystemClock
from queueflow.core.config import settings
from queueflow.core.exceptions import (
    ClinicDayClosed,
    EntryNotFound,
    InvalidTransition,
    OverrideNotAllowed,
    StaleClinicDay,
    VersionConflict,
)
from queueflow.core.logger import get_logger
from queueflow.core.redis import SnapshotPublisher
from queueflow.core.utils import minutes_between, to_naive_utc
from queueflow.db.store import ClinicDayStore
from queueflow.models import (
    AppointmentType,
    ClinicDayConfig,
    ClinicQueueDay,
    Disruption,
    DisruptionEvent,
    EntryStatus,
    Estimate,
    EstimateBasis,
    EventKind,
    EventRecord,
    QueueEntry,
)
from queueflow.schemas.event import validate_payload
from queueflow.schemas.queue import ClinicDaySnapshot, QueueEntryResponse, QueueSummary
from queueflow.services.coalescer import RecalculationCoalescer
from queueflow.services.disruption_detector import FLAG_FOR_KIND, DisruptionDetector
from queueflow.services.estimator import DurationPrediction, EstimatorGateway
from queueflow.services.recalculation import RecalculationEngine
from queueflow.services.state_machine import QueueStateMachine
from queueflow.services.strategies import FluidStrategy, HybridStrategy, SlottedStrategy, resolve_strategy

logger = get_logger("queue_service")

S = EntryStatus


class QueueService:
    def __init__(
        self,
        store: Optional[ClinicDayStore] = None,
        clock=None,
        estimator: Optional[EstimatorGateway] = None,
        publisher: Optional[SnapshotPublisher] = None,
        retry_limit: Optional[int] = None,
    ):
        self.store = store or ClinicDayStore()
        self.clock = clock or SystemClock()
        self.estimator = estimator or EstimatorGateway()
        self.publisher = publisher or SnapshotPublisher()
        self.retry_limit = retry_limit or settings.OPTIMISTIC_RETRY_LIMIT
        self.state_machine = QueueStateMachine()
        self.detector = DisruptionDetector()
        self.engine = RecalculationEngine()
        self.coalescer = RecalculationCoalescer(self._recompute)

    # Clinic day lifecycle

    async def open_day(self, clinic_id: str, operating_date: date, config: ClinicDayConfig, clinic_day_id: Optional[str] = None) -> ClinicQueueDay:
        config.check()
        day = ClinicQueueDay(clinic_id=clinic_id, operating_date=operating_date, config=config)
        if clinic_day_id:
            day.id = clinic_day_id
        day = await self.store.add(day)
        logger.info(f"Opened clinic day {day.id} for clinic {clinic_id} on {operating_date} ({self._strategy_name(day)})")
        return day

    async def close_day(self, clinic_day_id: str) -> ClinicQueueDay:
        self.coalescer.cancel(clinic_day_id)

        def close(day: ClinicQueueDay, now: datetime):
            day.closed = True
            return None, []

        _, day = await self._write(clinic_day_id, close, allow_closed=True)
        logger.info(f"Closed clinic day {clinic_day_id}")
        return day

    # Queries

    async def get_day(self, clinic_day_id: str) -> ClinicQueueDay:
        return await self.store.get(clinic_day_id)

    async def get_entry(self, entry_id: str) -> QueueEntry:
        day = await self.store.get_for_entry(entry_id)
        return self._entry(day, entry_id)

    async def get_queue_snapshot(self, clinic_day_id: str) -> ClinicDaySnapshot:
        day = await self.store.get(clinic_day_id)
        return self.build_snapshot(day)

    async def get_queue_summary(self, clinic_day_id: str) -> QueueSummary:
        day = await self.store.get(clinic_day_id)
        counts = {status: 0 for status in EntryStatus}
        for entry in day.entries:
            counts[entry.status] += 1
        waits = [
            minutes_between(e.checked_in_at, e.started_at)
            for e in day.entries
            if e.status == S.completed and e.checked_in_at and e.started_at
        ]
        return QueueSummary(
            clinic_day_id=day.id,
            clinic_id=day.clinic_id,
            operating_date=day.operating_date,
            active_strategy=self._strategy_name(day, self.clock.now()),
            total_entries=len(day.entries),
            status_counts=counts,
            absent=sum(1 for e in day.entries if e.status == S.no_show and e.marked_absent_at is not None),
            current_queue_length=counts[S.scheduled] + counts[S.checked_in] + counts[S.waiting],
            average_wait_minutes=round(sum(waits) / len(waits)) if waits else 0,
            cumulative_delay_minutes=day.cumulative_delay_minutes,
        )

    def build_snapshot(self, day: ClinicQueueDay) -> ClinicDaySnapshot:
        now = self.clock.now()
        strategy = resolve_strategy(day)
        in_service = sorted(
            [e for e in day.entries if e.status == S.in_progress],
            key=lambda e: (e.started_at or datetime.max, e.queue_position),
        )
        line = [planned.entry for planned in strategy.plan(day, now)]
        history = sorted([e for e in day.entries if e.is_terminal], key=lambda e: e.queue_position)

        gaps = []
        if self._strategy_name(day, now) == SlottedStrategy.name:
            gaps = [g.scheduled_time for g in SlottedStrategy().open_gaps(day, now)]

        return ClinicDaySnapshot(
            clinic_day_id=day.id,
            clinic_id=day.clinic_id,
            operating_date=day.operating_date,
            version=day.version,
            closed=day.closed,
            active_strategy=self._strategy_name(day, now),
            cumulative_delay_minutes=day.cumulative_delay_minutes,
            last_recalculated_at=day.last_recalculated_at,
            open_gaps=gaps,
            entries=[QueueEntryResponse.model_validate(e) for e in in_service + line + history],
        )

    # Commands

    async def book_entry(
        self,
        clinic_day_id: str,
        scheduled_time: datetime,
        appointment_type: AppointmentType = AppointmentType.consultation,
        patient_ref: Optional[str] = None,
        punctuality_score: float = 0.0,
        entry_id: Optional[str] = None,
    ) -> QueueEntry:
        scheduled_time = to_naive_utc(scheduled_time)
        draft = QueueEntry(
            id=entry_id or str(uuid4()),
            clinic_day_id=clinic_day_id,
            patient_ref=patient_ref,
            appointment_type=appointment_type,
            scheduled_time=scheduled_time,
            estimated_duration_minutes=1,
            punctuality_score=punctuality_score,
            queue_position=0,
            status=S.scheduled,
        )
        prediction = await self._predict(clinic_day_id, draft)

        def book(day: ClinicQueueDay, now: datetime):
            entry = draft.model_copy(deep=True)
            entry.created_at = now
            entry.queue_position = day.take_position()
            self._apply_prediction(entry, prediction)
            entry.estimate = Estimate(
                estimated_start=scheduled_time,
                confidence=prediction.confidence,
                basis=EstimateBasis.scheduled,
                last_updated_at=now,
            )
            day.entries.append(entry)
            return entry.id, []

        entry_id, day = await self._write(clinic_day_id, book)
        return self._entry(day, entry_id)

    async def admit_walk_in(
        self,
        clinic_day_id: str,
        appointment_type: AppointmentType = AppointmentType.walk_in,
        patient_ref: Optional[str] = None,
        punctuality_score: float = 0.0,
    ) -> QueueEntry:
        event = DisruptionEvent(
            kind=EventKind.entry_inserted,
            clinic_day_id=clinic_day_id,
            affected_entry_id=str(uuid4()),
            observed_at=self.clock.now(),
            payload={
                "appointment_type": appointment_type.value,
                "patient_ref": patient_ref,
                "punctuality_score": punctuality_score,
            },
        )
        day, _ = await self._handle_event(event)
        return self._entry(day, event.affected_entry_id)

    async def check_in(self, entry_id: str, queue_version: int) -> QueueEntry:
        return await self._entry_command(entry_id, queue_version, EventKind.checked_in_late)

    async def mark_absent(self, entry_id: str, queue_version: int) -> QueueEntry:
        return await self._entry_command(entry_id, queue_version, EventKind.marked_absent)

    async def mark_returned(self, entry_id: str, queue_version: int) -> QueueEntry:
        return await self._entry_command(entry_id, queue_version, EventKind.returned_after_absent)

    async def complete_service(self, entry_id: str, actual_duration_minutes: float, queue_version: int) -> QueueEntry:
        return await self._entry_command(
            entry_id, queue_version, EventKind.duration_completed,
            {"actual_duration_minutes": actual_duration_minutes},
        )

    async def reorder(self, entry_id: str, new_position: int, queue_version: int) -> QueueEntry:
        return await self._entry_command(
            entry_id, queue_version, EventKind.manual_position_change,
            {"new_position": new_position},
        )

    async def swap(self, entry_id: str, other_entry_id: str, queue_version: int, other_queue_version: int) -> QueueEntry:
        return await self._entry_command(
            entry_id, queue_version, EventKind.manual_position_change,
            {"swap_with": other_entry_id, "swap_with_version": other_queue_version},
        )

    async def boost(self, entry_id: str, queue_version: int, points: Optional[float] = None) -> QueueEntry:
        points = settings.PRIORITY_BOOST_POINTS if points is None else points
        return await self._entry_command(
            entry_id, queue_version, EventKind.manual_position_change,
            {"boost_points": points},
        )

    async def start_service(self, entry_id: str, queue_version: int) -> QueueEntry:
        return await self._entry_transition(entry_id, queue_version, S.in_progress)

    async def cancel(self, entry_id: str, queue_version: int) -> QueueEntry:
        return await self._entry_transition(entry_id, queue_version, S.cancelled)

    async def call_next(self, clinic_day_id: str) -> Optional[QueueEntry]:
        def call(day: ClinicQueueDay, now: datetime):
            entry = resolve_strategy(day).next_callable(day, now)
            if entry is None:
                return None, []
            self.state_machine.advance_to_called(day, entry, now)
            return entry.id, []

        entry_id, day = await self._write(clinic_day_id, call)
        if entry_id is None:
            return None
        logger.info(f"Clinic day {clinic_day_id}: called entry {entry_id}")
        return self._entry(day, entry_id)

    # Ingress

    async def ingest(self, event: DisruptionEvent) -> Tuple[bool, List[Disruption]]:
        """
        Apply one external domain event. Delivery is at-least-once, so an
        event id that was already processed is acknowledged and skipped.
        Returns ``(duplicate, disruptions)``.
        """
        event.observed_at = to_naive_utc(event.observed_at)
        day = await self.store.get(event.clinic_day_id)
        if event.id in day.processed_event_ids:
            logger.info(f"Skipping duplicate event {event.id}")
            return True, []
        _, disruptions = await self._handle_event(event)
        return False, disruptions

    async def flush(self, clinic_day_id: str) -> None:
        await self.coalescer.flush(clinic_day_id)

    async def recalculate_now(self, clinic_day_id: str) -> ClinicQueueDay:
        """Full pass outside the disruption flow, for the opening of a day or operator refresh."""
        def full_pass(day: ClinicQueueDay, now: datetime):
            self.engine.recalculate(day, now)
            return None, []

        _, day = await self._write(clinic_day_id, full_pass)
        return day

    async def shutdown(self) -> None:
        await self.coalescer.shutdown()
        await self.publisher.close()

    # Internals

    async def _entry_command(self, entry_id: str, queue_version: int, kind: EventKind, payload: Optional[dict] = None) -> QueueEntry:
        day = await self.store.get_for_entry(entry_id)
        event = DisruptionEvent(
            kind=kind,
            clinic_day_id=day.id,
            affected_entry_id=entry_id,
            observed_at=self.clock.now(),
            payload=payload or {},
        )
        day, _ = await self._handle_event(event, queue_version)
        return self._entry(day, entry_id)

    async def _entry_transition(self, entry_id: str, queue_version: int, target: EntryStatus) -> QueueEntry:
        day = await self.store.get_for_entry(entry_id)

        def move(day: ClinicQueueDay, now: datetime):
            entry = self._checked_entry(day, entry_id, queue_version)
            self.state_machine.transition(day, entry, target, now)
            return entry.id, []

        _, day = await self._write(day.id, move)
        return self._entry(day, entry_id)

    async def _handle_event(self, event: DisruptionEvent, queue_version: Optional[int] = None) -> Tuple[ClinicQueueDay, List[Disruption]]:
        event.payload = validate_payload(event.kind, event.payload)
        prediction = None
        strict = queue_version is not None
        if event.kind == EventKind.entry_inserted:
            if not event.affected_entry_id:
                event.affected_entry_id = str(uuid4())
            draft = self._walk_in_draft(event)
            prediction = await self._predict(event.clinic_day_id, draft)

        def handle(day: ClinicQueueDay, now: datetime):
            if event.id in day.processed_event_ids:
                return [], []
            if queue_version is not None and event.affected_entry_id:
                self._checked_entry(day, event.affected_entry_id, queue_version)

            self._apply_event(day, event, prediction, strict)
            disruptions = self.detector.classify(day, event)
            for disruption in disruptions:
                flag = FLAG_FOR_KIND.get(disruption.kind)
                for flagged_id in disruption.entry_ids:
                    flagged = day.get_entry(flagged_id)
                    if flag is not None and flagged is not None:
                        flagged.disruption_flags.add(flag)

            day.processed_event_ids.add(event.id)
            day.event_log.append(EventRecord(event=event, disruptions=[d.kind for d in disruptions]))
            return disruptions, disruptions

        disruptions, day = await self._write(event.clinic_day_id, handle, now=event.observed_at)
        return day, disruptions

    def _apply_event(self, day: ClinicQueueDay, event: DisruptionEvent, prediction: Optional[DurationPrediction], strict: bool = False) -> None:
        # Commands are strict; re-delivered ingress events that already took effect only get classified
        now = event.observed_at
        kind = event.kind

        if kind == EventKind.entry_inserted:
            entry = self._walk_in_draft(event)
            entry.created_at = now
            entry.checked_in_at = now
            self._apply_prediction(entry, prediction)
            entry.estimate = Estimate(confidence=entry.duration_confidence, basis=EstimateBasis.recalculated, last_updated_at=now)
            resolve_strategy(day).admit_walk_in(day, entry, now)
            return

        if kind == EventKind.staff_unavailable:
            if event.payload.get("active_staff_count") is not None:
                count = event.payload["active_staff_count"]
                in_service = sum(1 for e in day.entries if e.status == S.in_progress)
                if count < in_service:
                    logger.warning(
                        f"Clinic day {day.id}: staff reduced to {count} with {in_service} services running, "
                        f"no new service starts until fewer than {count} remain"
                    )
                day.config.active_staff_count = count
            return

        if kind == EventKind.periodic_overrun_check:
            return

        entry = self._entry(day, event.affected_entry_id)
        if kind == EventKind.checked_in_late:
            if entry.status == S.scheduled or strict:
                self.state_machine.transition(day, entry, S.checked_in, now)
        elif kind == EventKind.marked_absent:
            if entry.status != S.no_show or strict:
                self.state_machine.transition(day, entry, S.no_show, now)
        elif kind == EventKind.returned_after_absent:
            if entry.status == S.no_show or strict:
                self.state_machine.transition(day, entry, S.returned, now)
                self.state_machine.transition(day, entry, S.waiting, now)
        elif kind == EventKind.duration_completed:
            if entry.status == S.in_progress or strict:
                actual = event.payload.get("actual_duration_minutes")
                if actual is None and entry.started_at is not None:
                    actual = minutes_between(entry.started_at, now)
                self.state_machine.transition(day, entry, S.completed, now)
                entry.actual_duration_minutes = actual
        elif kind == EventKind.manual_position_change:
            payload = event.payload
            if payload.get("swap_with"):
                other = self._entry(day, payload["swap_with"])
                if payload.get("swap_with_version") is not None:
                    self._checked_entry(day, other.id, payload["swap_with_version"])
                self._swap(day, entry, other, now)
            elif payload.get("boost_points"):
                self._boost(day, entry, payload["boost_points"], now)
            else:
                self._move(day, entry, payload["new_position"], now)

    def _check_movable(self, entry: QueueEntry) -> None:
        if entry.is_terminal or entry.status in (S.called, S.in_progress):
            raise InvalidTransition(entry.status.value, entry.status.value, f"Cannot reorder an entry that is {entry.status.value}")

    def _fluid_override(self, day: ClinicQueueDay, now: datetime, action: str) -> FluidStrategy:
        strategy = resolve_strategy(day)
        if isinstance(strategy, HybridStrategy):
            strategy = strategy.strategy_at(day, now)
        if not isinstance(strategy, FluidStrategy):
            raise OverrideNotAllowed(f"Cannot {action} while booked times decide the order")
        return strategy

    def _move(self, day: ClinicQueueDay, entry: QueueEntry, new_position: int, now: datetime) -> None:
        self._check_movable(entry)

        strategy = resolve_strategy(day)
        if isinstance(strategy, HybridStrategy):
            strategy = strategy.strategy_at(day, now)

        line = [p.entry for p in strategy.plan(day, now) if p.entry.status != S.called]
        line = [e for e in line if e.id != entry.id]
        index = max(0, min(new_position - 1, len(line)))
        if isinstance(strategy, FluidStrategy):
            strategy.place_between_neighbours(day, entry, index, now)
        line.insert(index, entry)

        for moved in line:
            moved.queue_position = day.take_position()
            moved.queue_version += 1

    def _swap(self, day: ClinicQueueDay, entry: QueueEntry, other: QueueEntry, now: datetime) -> None:
        if entry.id == other.id:
            raise OverrideNotAllowed("Cannot swap an entry with itself")
        self._check_movable(entry)
        self._check_movable(other)
        fluid = self._fluid_override(day, now, "swap entries")

        line = [e.id for e in fluid.order(day.entries, now) if e.status != S.called]
        first, second = sorted((entry, other), key=lambda e: line.index(e.id))
        first_index, second_index = line.index(first.id), line.index(second.id)
        # Later one takes the earlier slot, then the earlier one drops to where the later one was
        fluid.place_between_neighbours(day, second, first_index, now)
        fluid.place_between_neighbours(day, first, second_index, now)
        entry.queue_version += 1
        other.queue_version += 1
        fluid.sync_positions(day, now)

    def _boost(self, day: ClinicQueueDay, entry: QueueEntry, points: float, now: datetime) -> None:
        self._check_movable(entry)
        fluid = self._fluid_override(day, now, "boost priority")
        entry.priority_adjustment += points
        entry.queue_version += 1
        fluid.sync_positions(day, now)

    def _walk_in_draft(self, event: DisruptionEvent) -> QueueEntry:
        payload = event.payload
        return QueueEntry(
            id=event.affected_entry_id or str(uuid4()),
            clinic_day_id=event.clinic_day_id,
            patient_ref=payload.get("patient_ref"),
            appointment_type=AppointmentType(payload.get("appointment_type", AppointmentType.walk_in.value)),
            estimated_duration_minutes=1,
            punctuality_score=float(payload.get("punctuality_score") or 0.0),
            queue_position=0,
            status=S.waiting,
        )

    async def _predict(self, clinic_day_id: str, entry: QueueEntry) -> DurationPrediction:
        day = await self.store.get(clinic_day_id)
        return await self.estimator.estimate(entry, day)

    def _apply_prediction(self, entry: QueueEntry, prediction: DurationPrediction) -> None:
        entry.estimated_duration_minutes = prediction.minutes
        entry.duration_confidence = prediction.confidence

    async def _write(self, clinic_day_id: str, action: Callable, now: Optional[datetime] = None, allow_closed: bool = False):
        """
        Optimistic write: read a private copy, apply ``action``, commit only if
        nobody else committed meanwhile, otherwise retry on fresh state.
        ``action`` returns ``(result, disruptions)``.
        """
        last_conflict: Optional[VersionConflict] = None
        for attempt in range(self.retry_limit):
            day = await self.store.get(clinic_day_id)
            if day.closed and not allow_closed:
                raise ClinicDayClosed(clinic_day_id)

            read_version = day.version
            result, disruptions = action(day, now or self.clock.now())
            try:
                committed = await self.store.commit(day, read_version)
            except StaleClinicDay as exc:
                last_conflict = exc
                logger.warning(f"Clinic day {clinic_day_id}: write conflict on attempt {attempt + 1}, retrying")
                continue

            self.publisher.publish(committed.id, self.build_snapshot(committed).model_dump(mode="json"))
            if disruptions:
                self.coalescer.submit(committed.id, disruptions, committed.config.debounce_window_ms)
            return result, committed

        raise last_conflict

    async def _recompute(self, clinic_day_id: str, batch: List[Disruption]) -> None:
        now = max(d.event.observed_at for d in batch)

        def recompute(day: ClinicQueueDay, _now: datetime):
            strategy = resolve_strategy(day)
            affected = set()
            for disruption in batch:
                affected |= strategy.on_disruption(day, disruption, now)
            self.engine.recalculate(day, now, affected, strategy)
            return None, []

        day = await self.store.get(clinic_day_id)
        if day.closed:
            logger.info(f"Clinic day {clinic_day_id} closed, skipping recompute")
            return
        await self._write(clinic_day_id, recompute, now=now)

    def _checked_entry(self, day: ClinicQueueDay, entry_id: str, queue_version: int) -> QueueEntry:
        entry = self._entry(day, entry_id)
        if entry.queue_version != queue_version:
            raise VersionConflict(queue_version, entry.queue_version)
        return entry

    def _entry(self, day: ClinicQueueDay, entry_id: str) -> QueueEntry:
        entry = day.get_entry(entry_id)
        if entry is None:
            raise EntryNotFound(entry_id)
        return entry

    def _strategy_name(self, day: ClinicQueueDay, now: Optional[datetime] = None) -> str:
        strategy = resolve_strategy(day)
        if isinstance(strategy, HybridStrategy) and now is not None:
            return strategy.strategy_at(day, now).name
        return strategy.name
