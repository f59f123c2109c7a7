import asyncio
from typing import Dict

from queueflow.core.exceptions import ClinicDayNotFound, EntryNotFound, StaleClinicDay
from queueflow.models import ClinicQueueDay


class ClinicDayStore:
    """
    In-memory home of every open clinic day.

    Readers always get a private deep copy. A writer hands its modified copy
    back to ``commit`` together with the version it read; the write lands only
    if nobody else committed in between.
    """

    def __init__(self):
        self._days: Dict[str, ClinicQueueDay] = {}
        self._entry_index: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def add(self, day: ClinicQueueDay) -> ClinicQueueDay:
        async with self._lock:
            self._days[day.id] = day.model_copy(deep=True)
            self._index(day)
        return day.model_copy(deep=True)

    async def get(self, clinic_day_id: str) -> ClinicQueueDay:
        day = self._days.get(clinic_day_id)
        if day is None:
            raise ClinicDayNotFound(clinic_day_id)
        return day.model_copy(deep=True)

    async def get_for_entry(self, entry_id: str) -> ClinicQueueDay:
        clinic_day_id = self._entry_index.get(entry_id)
        if clinic_day_id is None:
            raise EntryNotFound(entry_id)
        return await self.get(clinic_day_id)

    async def commit(self, day: ClinicQueueDay, expected_version: int) -> ClinicQueueDay:
        async with self._lock:
            current = self._days.get(day.id)
            if current is None:
                raise ClinicDayNotFound(day.id)
            if current.version != expected_version:
                raise StaleClinicDay(expected_version, current.version)

            stored = day.model_copy(deep=True)
            stored.version = expected_version + 1
            self._days[day.id] = stored
            self._index(stored)
        return stored.model_copy(deep=True)

    def _index(self, day: ClinicQueueDay) -> None:
        for entry in day.entries:
            self._entry_index[entry.id] = day.id
