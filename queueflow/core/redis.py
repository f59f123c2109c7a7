import asyncio
import json
from typing import Any, Dict, List, Set

import redis.asyncio as redis
from queueflow.core.config import settings
from queueflow.core.logger import get_logger

logger = get_logger("publisher")


class SnapshotPublisher:
    """Fire-and-forget fan-out of committed clinic-day snapshots."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    async def send(self, clinic_day_id: str, snapshot: Dict[str, Any]) -> None:
        return None

    def publish(self, clinic_day_id: str, snapshot: Dict[str, Any]) -> None:
        task = asyncio.create_task(self._guarded_send(clinic_day_id, snapshot))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guarded_send(self, clinic_day_id: str, snapshot: Dict[str, Any]) -> None:
        try:
            await self.send(clinic_day_id, snapshot)
        except Exception:
            logger.exception(f"Failed to publish snapshot for clinic day {clinic_day_id}")

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()


class RedisSnapshotPublisher(SnapshotPublisher):
    def __init__(self, url: str = None, channel_prefix: str = None):
        super().__init__()
        self.redis = redis.from_url(url or settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        self.channel_prefix = channel_prefix or settings.SNAPSHOT_CHANNEL_PREFIX

    async def send(self, clinic_day_id: str, snapshot: Dict[str, Any]) -> None:
        await self.redis.publish(f"{self.channel_prefix}:{clinic_day_id}", json.dumps(snapshot, default=str))

    async def close(self) -> None:
        await super().close()
        await self.redis.close()


class RecordingPublisher(SnapshotPublisher):
    """Keeps published snapshots in memory, for local runs and tests."""

    def __init__(self):
        super().__init__()
        self.published: List[Dict[str, Any]] = []

    async def send(self, clinic_day_id: str, snapshot: Dict[str, Any]) -> None:
        self.published.append({"clinic_day_id": clinic_day_id, "snapshot": snapshot})


def build_publisher() -> SnapshotPublisher:
    if settings.PUBLISH_SNAPSHOTS:
        return RedisSnapshotPublisher()
    return SnapshotPublisher()
