from pydantic import BaseModel, Field, ValidationError, model_validator
from datetime import datetime
from typing import Any, Dict, List, Optional

from queueflow.core.exceptions import InvalidEventPayload
from queueflow.models import AppointmentType, DisruptionKind, EventKind

class EventIngest(BaseModel):
    id: Optional[str] = None
    kind: EventKind
    entry_id: Optional[str] = None
    timestamp: datetime
    payload: Dict[str, Any] = Field(default_factory=dict)

class IngestResult(BaseModel):
    event_id: str
    duplicate: bool = False
    disruptions: List[DisruptionKind] = []

# Payloads per event kind

class EmptyPayload(BaseModel):
    pass

class DurationCompletedPayload(BaseModel):
    actual_duration_minutes: Optional[float] = Field(default=None, gt=0)

class StaffChangePayload(BaseModel):
    active_staff_count: Optional[int] = Field(default=None, ge=0, strict=True)

class EntryInsertedPayload(BaseModel):
    appointment_type: AppointmentType = AppointmentType.walk_in
    patient_ref: Optional[str] = None
    punctuality_score: float = 0.0

class PositionChangePayload(BaseModel):
    new_position: Optional[int] = Field(default=None, ge=1)
    swap_with: Optional[str] = None
    swap_with_version: Optional[int] = None
    boost_points: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def one_change(self):
        given = [v for v in (self.new_position, self.swap_with, self.boost_points) if v is not None]
        if len(given) != 1:
            raise ValueError("exactly one of new_position, swap_with or boost_points is required")
        return self

EVENT_PAYLOADS = {
    EventKind.checked_in_late: EmptyPayload,
    EventKind.marked_absent: EmptyPayload,
    EventKind.returned_after_absent: EmptyPayload,
    EventKind.duration_completed: DurationCompletedPayload,
    EventKind.manual_position_change: PositionChangePayload,
    EventKind.entry_inserted: EntryInsertedPayload,
    EventKind.staff_unavailable: StaffChangePayload,
    EventKind.periodic_overrun_check: EmptyPayload,
}

def validate_payload(kind: EventKind, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Check an event payload against its kind and return it normalised; keys that were not sent stay absent."""
    try:
        parsed = EVENT_PAYLOADS[kind].model_validate(payload or {})
    except ValidationError as exc:
        errors = "; ".join(f"{'.'.join(str(p) for p in e['loc']) or 'payload'}: {e['msg']}" for e in exc.errors())
        raise InvalidEventPayload(kind.value, errors)
    return parsed.model_dump(mode="json", exclude_unset=True)
