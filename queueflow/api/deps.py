from typing import Optional

from queueflow.core.clock import SystemClock
from queueflow.core.redis import build_publisher
from queueflow.services.estimator import EstimatorGateway
from queueflow.services.queue_service import QueueService

_service: Optional[QueueService] = None

def get_queue_service() -> QueueService:
    global _service
    if _service is None:
        _service = QueueService(
            clock=SystemClock(),
            estimator=EstimatorGateway(),
            publisher=build_publisher(),
        )
    return _service

async def close_queue_service() -> None:
    global _service
    if _service is not None:
        await _service.shutdown()
        _service = None
