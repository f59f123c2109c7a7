from datetime import datetime, timezone


class SystemClock:
    def now(self) -> datetime:
        # Naive UTC, same as everything stored on the queue
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock:
    """
    Manually driven clock for replays and tests.
    """

    def __init__(self, start: datetime):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value
