from pydantic import BaseModel, Field
from typing import Optional, Set
from datetime import datetime
from uuid import uuid4

from .enums import AppointmentType, DisruptionFlag, EntryStatus, EstimateBasis, TERMINAL_STATUSES, PRESENT_STATUSES


class Estimate(BaseModel):
    estimated_start: Optional[datetime] = None
    confidence: float = 1.0
    basis: EstimateBasis = EstimateBasis.scheduled
    last_updated_at: Optional[datetime] = None


class QueueEntry(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    clinic_day_id: str
    patient_ref: Optional[str] = None
    appointment_type: AppointmentType
    scheduled_time: Optional[datetime] = None
    estimated_duration_minutes: float
    duration_confidence: float = 1.0
    actual_duration_minutes: Optional[float] = None
    queue_position: int
    status: EntryStatus
    created_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    called_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    marked_absent_at: Optional[datetime] = None
    disruption_flags: Set[DisruptionFlag] = Field(default_factory=set)
    estimate: Estimate = Field(default_factory=Estimate)
    queue_version: int = 0
    # Walk-ins placed into a vacated slot remember which slot they took
    gap_slot_time: Optional[datetime] = None
    filled_gap_entry_id: Optional[str] = None
    punctuality_score: float = 0.0
    priority_adjustment: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_present(self) -> bool:
        return self.status in PRESENT_STATUSES

    @property
    def slot_time(self) -> Optional[datetime]:
        return self.scheduled_time or self.gap_slot_time
