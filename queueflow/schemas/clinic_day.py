from pydantic import BaseModel
from datetime import date
from typing import Optional

from queueflow.models import ClinicDayConfig

class ClinicDayCreate(BaseModel):
    clinic_id: str
    operating_date: date
    config: ClinicDayConfig
    clinic_day_id: Optional[str] = None

class ClinicDayResponse(BaseModel):
    id: str
    clinic_id: str
    operating_date: date
    version: int
    closed: bool
    config: ClinicDayConfig

    class Config:
        from_attributes = True
