from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import Dict, List, Optional, Set

from queueflow.models import AppointmentType, DisruptionFlag, EntryStatus, EstimateBasis

class EstimateResponse(BaseModel):
    estimated_start: Optional[datetime]
    confidence: float
    basis: EstimateBasis
    last_updated_at: Optional[datetime]

    class Config:
        from_attributes = True

class QueueEntryResponse(BaseModel):
    id: str
    clinic_day_id: str
    patient_ref: Optional[str]
    appointment_type: AppointmentType
    scheduled_time: Optional[datetime]
    gap_slot_time: Optional[datetime]
    estimated_duration_minutes: float
    actual_duration_minutes: Optional[float]
    queue_position: int
    status: EntryStatus
    checked_in_at: Optional[datetime]
    called_at: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    disruption_flags: Set[DisruptionFlag]
    estimate: EstimateResponse
    queue_version: int

    class Config:
        from_attributes = True

class ClinicDaySnapshot(BaseModel):
    clinic_day_id: str
    clinic_id: str
    operating_date: date
    version: int
    closed: bool
    active_strategy: str
    cumulative_delay_minutes: float
    last_recalculated_at: Optional[datetime]
    open_gaps: List[datetime] = []
    entries: List[QueueEntryResponse]

class QueueSummary(BaseModel):
    clinic_day_id: str
    clinic_id: str
    operating_date: date
    active_strategy: str
    total_entries: int
    status_counts: Dict[EntryStatus, int]
    absent: int
    current_queue_length: int
    average_wait_minutes: int
    cumulative_delay_minutes: float

class VersionedCommand(BaseModel):
    queue_version: int

class CompleteServiceRequest(VersionedCommand):
    actual_duration_minutes: float = Field(gt=0)

class ReorderRequest(VersionedCommand):
    new_position: int = Field(ge=1)

class SwapRequest(VersionedCommand):
    other_entry_id: str
    other_queue_version: int

class BoostRequest(VersionedCommand):
    points: Optional[float] = Field(default=None, gt=0)

class BookEntryRequest(BaseModel):
    patient_ref: Optional[str] = None
    appointment_type: AppointmentType = AppointmentType.consultation
    scheduled_time: datetime
    punctuality_score: float = 0.0

class WalkInRequest(BaseModel):
    appointment_type: AppointmentType = AppointmentType.walk_in
    patient_ref: Optional[str] = None
    punctuality_score: float = 0.0

class CallNextResponse(BaseModel):
    entry: Optional[QueueEntryResponse] = None
