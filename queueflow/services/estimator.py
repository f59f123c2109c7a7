import asyncio
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field

from queueflow.core.config import settings
from queueflow.core.exceptions import EstimatorUnavailable
from queueflow.core.logger import get_logger
from queueflow.models import AppointmentType, ClinicQueueDay, EntryStatus, QueueEntry

logger = get_logger("estimator")


class DurationPrediction(BaseModel):
    minutes: float = Field(gt=0)
    confidence: float = Field(ge=0, le=1)
    source: str = "model"


class ClinicContext(BaseModel):
    clinic_id: str
    clinic_day_id: str
    operating_date: date
    historical_average_minutes: float


class DurationEstimator:
    """
    Contract for an external duration predictor. Implementations are async
    and may be slow or fail; the gateway below bounds and absorbs both.
    """

    async def predict(self, entry: QueueEntry, context: ClinicContext) -> DurationPrediction:
        raise NotImplementedError


class HistoricalAverageEstimator:
    confidence = 0.5

    def average_for(self, day: ClinicQueueDay, appointment_type: AppointmentType) -> float:
        # Prefer what this clinic actually did today, then the configured average
        actuals = [
            e.actual_duration_minutes
            for e in day.entries
            if e.status == EntryStatus.completed
            and e.appointment_type == appointment_type
            and e.actual_duration_minutes is not None
        ]
        if actuals:
            return sum(actuals) / len(actuals)
        return day.config.average_duration_minutes[appointment_type]

    def predict(self, entry: QueueEntry, day: ClinicQueueDay) -> DurationPrediction:
        return DurationPrediction(
            minutes=self.average_for(day, entry.appointment_type),
            confidence=self.confidence,
            source="historical-average",
        )


class EstimatorGateway:
    def __init__(
        self,
        estimator: Optional[DurationEstimator] = None,
        fallback: Optional[HistoricalAverageEstimator] = None,
        timeout_seconds: Optional[float] = None,
        confidence_floor: Optional[float] = None,
    ):
        self.estimator = estimator
        self.fallback = fallback or HistoricalAverageEstimator()
        self.timeout_seconds = settings.ESTIMATOR_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        self.confidence_floor = settings.ESTIMATOR_CONFIDENCE_FLOOR if confidence_floor is None else confidence_floor

    async def estimate(self, entry: QueueEntry, day: ClinicQueueDay) -> DurationPrediction:
        if self.estimator is None:
            return self.fallback.predict(entry, day)
        try:
            return await self._predict(entry, day)
        except EstimatorUnavailable as exc:
            logger.warning(f"Duration estimator unavailable for entry {entry.id}, using historical average: {exc.detail}")
            return self.fallback.predict(entry, day)

    async def _predict(self, entry: QueueEntry, day: ClinicQueueDay) -> DurationPrediction:
        context = ClinicContext(
            clinic_id=day.clinic_id,
            clinic_day_id=day.id,
            operating_date=day.operating_date,
            historical_average_minutes=self.fallback.average_for(day, entry.appointment_type),
        )
        try:
            prediction = await asyncio.wait_for(self.estimator.predict(entry, context), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise EstimatorUnavailable(f"timed out after {self.timeout_seconds}s")
        except Exception as exc:
            raise EstimatorUnavailable(f"{type(exc).__name__}: {exc}") from exc

        if prediction.confidence < self.confidence_floor:
            raise EstimatorUnavailable(f"confidence {prediction.confidence:.2f} below floor {self.confidence_floor:.2f}")
        return prediction
