from fastapi import APIRouter, Depends

from queueflow.api.deps import get_queue_service
from queueflow.schemas.clinic_day import ClinicDayCreate, ClinicDayResponse
from queueflow.schemas.queue import (
    BookEntryRequest,
    CallNextResponse,
    ClinicDaySnapshot,
    QueueEntryResponse,
    QueueSummary,
    WalkInRequest,
)
from queueflow.services.queue_service import QueueService

router = APIRouter()

@router.post("/", response_model=ClinicDayResponse)
async def open_clinic_day(
    request: ClinicDayCreate,
    service: QueueService = Depends(get_queue_service)
):
    return await service.open_day(
        request.clinic_id,
        request.operating_date,
        request.config,
        clinic_day_id=request.clinic_day_id,
    )

@router.get("/{clinic_day_id}/snapshot", response_model=ClinicDaySnapshot)
async def read_snapshot(
    clinic_day_id: str,
    service: QueueService = Depends(get_queue_service)
):
    return await service.get_queue_snapshot(clinic_day_id)

@router.get("/{clinic_day_id}/summary", response_model=QueueSummary)
async def read_summary(
    clinic_day_id: str,
    service: QueueService = Depends(get_queue_service)
):
    return await service.get_queue_summary(clinic_day_id)

@router.post("/{clinic_day_id}/entries", response_model=QueueEntryResponse)
async def book_entry(
    clinic_day_id: str,
    request: BookEntryRequest,
    service: QueueService = Depends(get_queue_service)
):
    return await service.book_entry(
        clinic_day_id,
        request.scheduled_time,
        appointment_type=request.appointment_type,
        patient_ref=request.patient_ref,
        punctuality_score=request.punctuality_score,
    )

@router.post("/{clinic_day_id}/walk-ins", response_model=QueueEntryResponse)
async def admit_walk_in(
    clinic_day_id: str,
    request: WalkInRequest,
    service: QueueService = Depends(get_queue_service)
):
    return await service.admit_walk_in(
        clinic_day_id,
        appointment_type=request.appointment_type,
        patient_ref=request.patient_ref,
        punctuality_score=request.punctuality_score,
    )

@router.post("/{clinic_day_id}/call-next", response_model=CallNextResponse)
async def call_next(
    clinic_day_id: str,
    service: QueueService = Depends(get_queue_service)
):
    entry = await service.call_next(clinic_day_id)
    return CallNextResponse(entry=QueueEntryResponse.model_validate(entry) if entry else None)

@router.post("/{clinic_day_id}/recalculate", response_model=ClinicDaySnapshot)
async def recalculate(
    clinic_day_id: str,
    service: QueueService = Depends(get_queue_service)
):
    day = await service.recalculate_now(clinic_day_id)
    return service.build_snapshot(day)

@router.post("/{clinic_day_id}/close", response_model=ClinicDayResponse)
async def close_clinic_day(
    clinic_day_id: str,
    service: QueueService = Depends(get_queue_service)
):
    return await service.close_day(clinic_day_id)
