from queueflow.models import (
    AppointmentType,
    Disruption,
    DisruptionEvent,
    DisruptionKind,
    EntryStatus,
    EventKind,
    QueueMode,
    TimeBlock,
)
from queueflow.services.priority_scorer import PriorityScorer
from queueflow.services.strategies import (
    FluidStrategy,
    HybridStrategy,
    SlottedStrategy,
    resolve_strategy,
)
from tests.factories import at, make_config, make_day, make_entry, make_weights

S = EntryStatus


def hybrid_config():
    return make_config(
        mode=QueueMode.slotted,
        blocks=[
            TimeBlock(start=at(9), end=at(11), mode=QueueMode.slotted),
            TimeBlock(start=at(11), end=at(13), mode=QueueMode.fluid),
        ],
    )


def disruption_for(entry_id, kind=DisruptionKind.late_arrival, event_kind=EventKind.checked_in_late):
    event = DisruptionEvent(kind=event_kind, clinic_day_id="day-1", affected_entry_id=entry_id, observed_at=at(10))
    return Disruption(kind=kind, event=event, entry_ids=[entry_id] if entry_id else [], reason="test")


def test_slotted_order_puts_called_first_then_booked_times_then_walk_ins():
    later = make_entry("later", at(10, 30), status=S.waiting)
    earlier = make_entry("earlier", at(10))
    walk_in = make_entry("walk", status=S.waiting, appointment_type=AppointmentType.walk_in)
    called = make_entry("called", at(10, 15), status=S.called, called_at=at(10))
    done = make_entry("done", at(9, 45), status=S.completed)
    day = make_day(entries=[later, earlier, walk_in, called, done])

    ordered = SlottedStrategy().order(day.entries)

    assert [e.id for e in ordered] == ["called", "earlier", "later", "walk"]


def test_open_gaps_are_past_vacated_slots_nearest_first():
    old = make_entry("old", at(9, 30), status=S.no_show)
    recent = make_entry("recent", at(10), status=S.cancelled)
    future = make_entry("future", at(10, 30), status=S.cancelled)
    day = make_day(entries=[old, recent, future])
    slotted = SlottedStrategy()

    assert [g.id for g in slotted.open_gaps(day, at(10, 10))] == ["recent", "old"]

    taker = make_entry("taker", status=S.waiting, gap_slot_time=at(10), filled_gap_entry_id="recent")
    day.entries.append(taker)
    assert [g.id for g in slotted.open_gaps(day, at(10, 10))] == ["old"]


def test_gap_is_released_only_when_its_walk_in_drops_out():
    gap = make_entry("gap", at(10), status=S.no_show)
    taker = make_entry("taker", status=S.completed, gap_slot_time=at(10), filled_gap_entry_id="gap")
    day = make_day(entries=[gap, taker])
    slotted = SlottedStrategy()

    assert slotted.open_gaps(day, at(10, 30)) == []

    taker.status = S.in_progress
    assert slotted.open_gaps(day, at(10, 30)) == []

    taker.status = S.cancelled
    assert [g.id for g in slotted.open_gaps(day, at(10, 30))] == ["gap"]

    taker.status = S.no_show
    assert [g.id for g in slotted.open_gaps(day, at(10, 30))] == ["gap"]


def test_slotted_does_not_call_early_without_a_gap():
    booked = make_entry("booked", at(10, 15), status=S.checked_in, checked_in_at=at(10))
    day = make_day(entries=[booked])

    assert SlottedStrategy().next_callable(day, at(10, 5)) is None


def test_slotted_calls_early_into_an_open_gap():
    gap = make_entry("gap", at(10), status=S.no_show)
    booked = make_entry("booked", at(10, 15), status=S.checked_in, checked_in_at=at(10))
    day = make_day(entries=[gap, booked])

    assert SlottedStrategy().next_callable(day, at(10, 5)).id == "booked"


def test_slotted_prefers_due_entries_then_walk_ins():
    due = make_entry("due", at(10), status=S.waiting, checked_in_at=at(9, 55))
    early = make_entry("early", at(10, 30), status=S.waiting, checked_in_at=at(9, 50))
    walk_in = make_entry("walk", status=S.waiting, appointment_type=AppointmentType.walk_in, checked_in_at=at(9, 40))
    day = make_day(entries=[early, walk_in, due])
    slotted = SlottedStrategy()

    assert slotted.next_callable(day, at(10, 5)).id == "due"
    due.status = S.called
    assert slotted.next_callable(day, at(10, 5)).id == "walk"


def test_slotted_disruption_affects_anchor_and_everyone_behind():
    before = make_entry("before", at(9, 45), status=S.waiting)
    anchor = make_entry("anchor", at(10), status=S.checked_in, checked_in_at=at(10, 10))
    after = make_entry("after", at(10, 15))
    day = make_day(entries=[before, anchor, after])

    affected = SlottedStrategy().on_disruption(day, disruption_for("anchor"), at(10, 10))

    assert affected == {"anchor", "after"}


def test_slotted_walk_in_takes_gap_or_emergency_is_due_now():
    gap = make_entry("gap", at(10), status=S.no_show)
    day = make_day(entries=[gap])
    slotted = SlottedStrategy()

    walk_in = make_entry("walk", status=S.waiting, appointment_type=AppointmentType.walk_in)
    slotted.admit_walk_in(day, walk_in, at(10, 12))
    assert walk_in.gap_slot_time == at(10)
    assert walk_in.filled_gap_entry_id == "gap"

    emergency = make_entry("em", status=S.waiting, appointment_type=AppointmentType.emergency)
    slotted.admit_walk_in(day, emergency, at(10, 14))
    assert emergency.gap_slot_time == at(10, 14)
    assert emergency.filled_gap_entry_id is None


def test_fluid_renumbers_from_high_water_mark():
    first = make_entry("first", status=S.waiting, checked_in_at=at(10))
    boosted = make_entry("boosted", status=S.waiting, checked_in_at=at(10), appointment_type=AppointmentType.emergency)
    day = make_day(make_config(mode=QueueMode.fluid), entries=[first, boosted])
    fluid = FluidStrategy(PriorityScorer(make_weights()))

    fluid.sync_positions(day, at(10))

    assert boosted.queue_position == 3
    assert first.queue_position == 4
    assert day.next_position == 5
    assert boosted.queue_version == 1


def test_fluid_disruption_touches_every_active_entry():
    waiting = make_entry("w", status=S.waiting, checked_in_at=at(10))
    scheduled = make_entry("s", at(11))
    done = make_entry("d", status=S.completed)
    day = make_day(make_config(mode=QueueMode.fluid), entries=[waiting, scheduled, done])
    fluid = FluidStrategy(PriorityScorer(make_weights()))

    assert fluid.on_disruption(day, disruption_for("w"), at(10)) == {"w", "s"}


def test_hybrid_block_membership_is_half_open():
    day = make_day(hybrid_config())
    strategy = resolve_strategy(day)

    assert isinstance(strategy, HybridStrategy)
    assert strategy.strategy_at(day, at(10, 59)).name == "slotted"
    assert strategy.strategy_at(day, at(11)).name == "fluid"


def test_hybrid_gates_entries_of_blocks_not_started_yet():
    current = make_entry("current", at(10, 45), status=S.checked_in, checked_in_at=at(10, 40))
    fluid_booked = make_entry("fluid-booked", at(11, 30))
    day = make_day(hybrid_config(), entries=[fluid_booked, current])

    plan = resolve_strategy(day).plan(day, at(10, 40))

    assert [(p.entry.id, p.not_before) for p in plan] == [
        ("current", at(10, 45)),
        ("fluid-booked", at(11)),
    ]


def test_resolve_strategy_by_mode():
    assert isinstance(resolve_strategy(make_day(make_config(mode=QueueMode.slotted))), SlottedStrategy)
    assert isinstance(resolve_strategy(make_day(make_config(mode=QueueMode.fluid))), FluidStrategy)
