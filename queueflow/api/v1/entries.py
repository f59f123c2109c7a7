from fastapi import APIRouter, Depends

from queueflow.api.deps import get_queue_service
from queueflow.schemas.queue import (
    BoostRequest,
    CompleteServiceRequest,
    QueueEntryResponse,
    ReorderRequest,
    SwapRequest,
    VersionedCommand,
)
from queueflow.services.queue_service import QueueService

router = APIRouter()

@router.get("/{entry_id}", response_model=QueueEntryResponse)
async def read_entry(
    entry_id: str,
    service: QueueService = Depends(get_queue_service)
):
    return await service.get_entry(entry_id)

@router.post("/{entry_id}/check-in", response_model=QueueEntryResponse)
async def check_in(
    entry_id: str,
    request: VersionedCommand,
    service: QueueService = Depends(get_queue_service)
):
    return await service.check_in(entry_id, request.queue_version)

@router.post("/{entry_id}/absent", response_model=QueueEntryResponse)
async def mark_absent(
    entry_id: str,
    request: VersionedCommand,
    service: QueueService = Depends(get_queue_service)
):
    return await service.mark_absent(entry_id, request.queue_version)

@router.post("/{entry_id}/return", response_model=QueueEntryResponse)
async def mark_returned(
    entry_id: str,
    request: VersionedCommand,
    service: QueueService = Depends(get_queue_service)
):
    return await service.mark_returned(entry_id, request.queue_version)

@router.post("/{entry_id}/start", response_model=QueueEntryResponse)
async def start_service(
    entry_id: str,
    request: VersionedCommand,
    service: QueueService = Depends(get_queue_service)
):
    return await service.start_service(entry_id, request.queue_version)

@router.post("/{entry_id}/complete", response_model=QueueEntryResponse)
async def complete_service(
    entry_id: str,
    request: CompleteServiceRequest,
    service: QueueService = Depends(get_queue_service)
):
    return await service.complete_service(entry_id, request.actual_duration_minutes, request.queue_version)

@router.post("/{entry_id}/reorder", response_model=QueueEntryResponse)
async def reorder(
    entry_id: str,
    request: ReorderRequest,
    service: QueueService = Depends(get_queue_service)
):
    return await service.reorder(entry_id, request.new_position, request.queue_version)

@router.post("/{entry_id}/swap", response_model=QueueEntryResponse)
async def swap(
    entry_id: str,
    request: SwapRequest,
    service: QueueService = Depends(get_queue_service)
):
    return await service.swap(entry_id, request.other_entry_id, request.queue_version, request.other_queue_version)

@router.post("/{entry_id}/boost", response_model=QueueEntryResponse)
async def boost(
    entry_id: str,
    request: BoostRequest,
    service: QueueService = Depends(get_queue_service)
):
    return await service.boost(entry_id, request.queue_version, request.points)

@router.post("/{entry_id}/cancel", response_model=QueueEntryResponse)
async def cancel(
    entry_id: str,
    request: VersionedCommand,
    service: QueueService = Depends(get_queue_service)
):
    return await service.cancel(entry_id, request.queue_version)
