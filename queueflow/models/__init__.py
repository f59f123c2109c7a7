from .enums import (
    AppointmentType,
    DisruptionFlag,
    DisruptionKind,
    EntryStatus,
    EstimateBasis,
    EventKind,
    QueueMode,
    TERMINAL_STATUSES,
    PRESENT_STATUSES,
)
from .entry import Estimate, QueueEntry
from .event import Disruption, DisruptionEvent, EventRecord
from .clinic_day import ClinicDayConfig, ClinicQueueDay, OperatingHours, PriorityWeights, TimeBlock

__all__ = [
    "AppointmentType",
    "DisruptionFlag",
    "DisruptionKind",
    "EntryStatus",
    "EstimateBasis",
    "EventKind",
    "QueueMode",
    "TERMINAL_STATUSES",
    "PRESENT_STATUSES",
    "Estimate",
    "QueueEntry",
    "Disruption",
    "DisruptionEvent",
    "EventRecord",
    "ClinicDayConfig",
    "ClinicQueueDay",
    "OperatingHours",
    "PriorityWeights",
    "TimeBlock",
]
