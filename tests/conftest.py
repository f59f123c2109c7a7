import pytest
import pytest_asyncio

from queueflow.core.clock import FixedClock
from queueflow.core.redis import RecordingPublisher
from queueflow.db.store import ClinicDayStore
from queueflow.services.estimator import EstimatorGateway
from queueflow.services.queue_service import QueueService
from tests.factories import at


@pytest.fixture
def clock():
    return FixedClock(at(9))


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest_asyncio.fixture
async def service(clock, publisher):
    service = QueueService(
        store=ClinicDayStore(),
        clock=clock,
        estimator=EstimatorGateway(),
        publisher=publisher,
    )
    yield service
    await service.shutdown()
