from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from uuid import uuid4

from .enums import DisruptionKind, EventKind


class DisruptionEvent(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    kind: EventKind
    clinic_day_id: str
    affected_entry_id: Optional[str] = None
    observed_at: datetime
    payload: Dict[str, Any] = Field(default_factory=dict)


class Disruption(BaseModel):
    kind: DisruptionKind
    event: DisruptionEvent
    entry_ids: List[str] = Field(default_factory=list)
    reason: str


class EventRecord(BaseModel):
    """History line for one ingested event, classified or not."""

    event: DisruptionEvent
    disruptions: List[DisruptionKind] = Field(default_factory=list)
