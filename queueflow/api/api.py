from fastapi import APIRouter
from queueflow.api.v1 import clinic_days, entries, events

api_router = APIRouter()

api_router.include_router(clinic_days.router, prefix="/clinic-days", tags=["clinic-days"])
api_router.include_router(entries.router, prefix="/entries", tags=["entries"])
api_router.include_router(events.router, prefix="/clinic-days", tags=["events"])
