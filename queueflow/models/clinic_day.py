from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Set
from datetime import date, datetime
from uuid import uuid4

from queueflow.core.exceptions import ConfigurationError
from .enums import AppointmentType, QueueMode
from .entry import QueueEntry
from .event import EventRecord


class TimeBlock(BaseModel):
    start: datetime
    end: datetime
    mode: QueueMode

    def contains(self, at: datetime) -> bool:
        return self.start <= at < self.end


class OperatingHours(BaseModel):
    start: datetime
    end: datetime

    def contains(self, at: datetime) -> bool:
        return self.start <= at < self.end


class PriorityWeights(BaseModel):
    w1: float = Field(ge=0)
    w2: float = Field(ge=0)
    w3: float = Field(ge=0)
    emergency_boost: float = Field(ge=0)
    type_weights: Dict[AppointmentType, float]


class ClinicDayConfig(BaseModel):
    mode: QueueMode
    blocks: List[TimeBlock] = Field(default_factory=list)
    operating_hours: OperatingHours
    active_staff_count: int = Field(ge=0)
    graceperiod_minutes: float = Field(ge=0)
    late_threshold_minutes: float = Field(ge=0)
    duration_overrun_threshold_minutes: float = Field(ge=0)
    staff_idle_window_minutes: float = Field(ge=0)
    debounce_window_ms: int = Field(ge=0)
    priority_weights: PriorityWeights
    average_duration_minutes: Dict[AppointmentType, float]

    def check(self) -> None:
        """Reject schedules the engine cannot run; called before a day is opened."""
        if self.operating_hours.end <= self.operating_hours.start:
            raise ConfigurationError("Operating hours must end after they start")

        previous: Optional[TimeBlock] = None
        for block in self.blocks:
            if block.end <= block.start:
                raise ConfigurationError(f"Block starting {block.start.isoformat()} ends before it starts")
            if previous is not None:
                if block.start < previous.start:
                    raise ConfigurationError("Blocks must be listed in start order")
                if block.start < previous.end:
                    raise ConfigurationError(
                        f"Block starting {block.start.isoformat()} overlaps block ending {previous.end.isoformat()}"
                    )
            previous = block

        for appointment_type in AppointmentType:
            average = self.average_duration_minutes.get(appointment_type)
            if average is None or average <= 0:
                raise ConfigurationError(f"Missing average duration for '{appointment_type.value}'")
            if appointment_type not in self.priority_weights.type_weights:
                raise ConfigurationError(f"Missing type weight for '{appointment_type.value}'")


class ClinicQueueDay(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    clinic_id: str
    operating_date: date
    config: ClinicDayConfig
    entries: List[QueueEntry] = Field(default_factory=list)
    next_position: int = 1
    version: int = 0
    closed: bool = False
    processed_event_ids: Set[str] = Field(default_factory=set)
    event_log: List[EventRecord] = Field(default_factory=list)
    cumulative_delay_minutes: float = 0.0
    last_recalculated_at: Optional[datetime] = None
    last_service_start_at: Optional[datetime] = None

    def get_entry(self, entry_id: str) -> Optional[QueueEntry]:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    def take_position(self) -> int:
        position = self.next_position
        self.next_position += 1
        return position

    def block_at(self, at: datetime) -> Optional[TimeBlock]:
        for block in self.config.blocks:
            if block.contains(at):
                return block
        return None

    def mode_at(self, at: datetime) -> QueueMode:
        block = self.block_at(at)
        return block.mode if block else self.config.mode
