from fastapi import APIRouter, Depends

from queueflow.api.deps import get_queue_service
from queueflow.models import DisruptionEvent
from queueflow.schemas.event import EventIngest, IngestResult
from queueflow.services.queue_service import QueueService

router = APIRouter()

@router.post("/{clinic_day_id}/events", response_model=IngestResult)
async def ingest_event(
    clinic_day_id: str,
    request: EventIngest,
    service: QueueService = Depends(get_queue_service)
):
    event = DisruptionEvent(
        kind=request.kind,
        clinic_day_id=clinic_day_id,
        affected_entry_id=request.entry_id,
        observed_at=request.timestamp,
        payload=request.payload,
    )
    if request.id:
        event.id = request.id
    duplicate, disruptions = await service.ingest(event)
    return IngestResult(event_id=event.id, duplicate=duplicate, disruptions=[d.kind for d in disruptions])
