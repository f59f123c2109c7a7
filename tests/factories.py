from datetime import datetime

from queueflow.models import (
    AppointmentType,
    ClinicDayConfig,
    ClinicQueueDay,
    EntryStatus,
    OperatingHours,
    PriorityWeights,
    QueueEntry,
    QueueMode,
)

DAY = datetime(2026, 3, 2)


def at(hour: int, minute: int = 0) -> datetime:
    return DAY.replace(hour=hour, minute=minute)


def make_weights(**overrides) -> PriorityWeights:
    fields = dict(
        w1=1.0,
        w2=1.0,
        w3=1.0,
        emergency_boost=100.0,
        type_weights={
            AppointmentType.consultation: 10.0,
            AppointmentType.follow_up: 5.0,
            AppointmentType.emergency: 50.0,
            AppointmentType.walk_in: 0.0,
        },
    )
    fields.update(overrides)
    return PriorityWeights(**fields)


def make_config(mode: QueueMode = QueueMode.slotted, **overrides) -> ClinicDayConfig:
    fields = dict(
        mode=mode,
        blocks=[],
        operating_hours=OperatingHours(start=at(9), end=at(17)),
        active_staff_count=1,
        graceperiod_minutes=10,
        late_threshold_minutes=5,
        duration_overrun_threshold_minutes=10,
        staff_idle_window_minutes=20,
        debounce_window_ms=0,
        priority_weights=make_weights(),
        average_duration_minutes={
            AppointmentType.consultation: 15.0,
            AppointmentType.follow_up: 10.0,
            AppointmentType.emergency: 20.0,
            AppointmentType.walk_in: 15.0,
        },
    )
    fields.update(overrides)
    return ClinicDayConfig(**fields)


def make_day(config: ClinicDayConfig = None, entries=None) -> ClinicQueueDay:
    day = ClinicQueueDay(id="day-1", clinic_id="clinic-1", operating_date=DAY.date(), config=config or make_config())
    for entry in entries or []:
        entry.clinic_day_id = day.id
        entry.queue_position = day.take_position()
        day.entries.append(entry)
    return day


def make_entry(
    entry_id: str,
    scheduled_time: datetime = None,
    status: EntryStatus = EntryStatus.scheduled,
    appointment_type: AppointmentType = AppointmentType.consultation,
    duration: float = 15.0,
    **fields,
) -> QueueEntry:
    fields.setdefault("queue_position", 0)
    return QueueEntry(
        id=entry_id,
        clinic_day_id="day-1",
        appointment_type=appointment_type,
        scheduled_time=scheduled_time,
        estimated_duration_minutes=duration,
        status=status,
        **fields,
    )
