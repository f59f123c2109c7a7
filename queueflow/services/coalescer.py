import asyncio
from typing import Awaitable, Callable, Dict, List

from queueflow.core.logger import get_logger
from queueflow.models import Disruption

logger = get_logger("coalescer")

PassRunner = Callable[[str, List[Disruption]], Awaitable[None]]


class RecalculationCoalescer:
    """
    Batches disruptions per clinic day behind a debounce timer.

    Each new disruption restarts the day's timer; when it finally fires the
    whole batch goes through one recompute pass. A timer that has fired is
    no longer reset by new disruptions, those start the next batch.
    """

    def __init__(self, run_pass: PassRunner):
        self._run_pass = run_pass
        self._pending: Dict[str, List[Disruption]] = {}
        self._timers: Dict[str, asyncio.Task] = {}
        self._running: Dict[str, asyncio.Task] = {}

    def submit(self, clinic_day_id: str, disruptions: List[Disruption], window_ms: int) -> None:
        if not disruptions:
            return
        self._pending.setdefault(clinic_day_id, []).extend(disruptions)

        timer = self._timers.pop(clinic_day_id, None)
        if timer is not None and not timer.done():
            timer.cancel()
        self._timers[clinic_day_id] = asyncio.create_task(self._fire(clinic_day_id, window_ms))

    def has_pending(self, clinic_day_id: str) -> bool:
        return bool(self._pending.get(clinic_day_id))

    async def _fire(self, clinic_day_id: str, window_ms: int) -> None:
        await asyncio.sleep(window_ms / 1000)
        if self._timers.get(clinic_day_id) is asyncio.current_task():
            del self._timers[clinic_day_id]
        await self._drain(clinic_day_id)

    async def _drain(self, clinic_day_id: str) -> None:
        batch = self._pending.pop(clinic_day_id, [])
        if not batch:
            return
        self._running[clinic_day_id] = asyncio.current_task()
        try:
            await self._run_pass(clinic_day_id, batch)
        except asyncio.CancelledError:
            logger.info(f"Recompute pass for clinic day {clinic_day_id} cancelled, {len(batch)} disruptions discarded")
            raise
        except Exception:
            logger.exception(f"Recompute pass for clinic day {clinic_day_id} failed")
        finally:
            if self._running.get(clinic_day_id) is asyncio.current_task():
                del self._running[clinic_day_id]

    async def flush(self, clinic_day_id: str) -> None:
        """Run whatever is pending now instead of waiting for the timer."""
        running = self._running.get(clinic_day_id)
        if running is not None:
            await asyncio.gather(running, return_exceptions=True)

        timer = self._timers.pop(clinic_day_id, None)
        if timer is not None and not timer.done():
            timer.cancel()
            await asyncio.gather(timer, return_exceptions=True)
        await self._drain(clinic_day_id)

    def cancel(self, clinic_day_id: str) -> int:
        """Drop pending disruptions and abort an in-flight pass without committing."""
        dropped = len(self._pending.pop(clinic_day_id, []))
        for tasks in (self._timers, self._running):
            task = tasks.pop(clinic_day_id, None)
            if task is not None and not task.done():
                task.cancel()
        if dropped:
            logger.info(f"Discarded {dropped} pending disruptions for clinic day {clinic_day_id}")
        return dropped

    async def shutdown(self) -> None:
        tasks = list(self._timers.values()) + list(self._running.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._timers.clear()
        self._running.clear()
        self._pending.clear()
