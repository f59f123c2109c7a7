from typing import Optional


class QueueError(Exception):
    """Base class for every rejected queue operation."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidTransition(QueueError):
    status_code = 409

    def __init__(self, current: str, requested: str, detail: Optional[str] = None):
        self.current = current
        self.requested = requested
        super().__init__(detail or f"Cannot move entry from '{current}' to '{requested}'")


class NoShowTooEarly(InvalidTransition):
    def __init__(self, current: str, elapsed_minutes: float, grace_minutes: float):
        self.elapsed_minutes = elapsed_minutes
        self.grace_minutes = grace_minutes
        super().__init__(
            current,
            "no_show",
            f"Grace period not elapsed: {elapsed_minutes:.1f} of {grace_minutes:.1f} minutes",
        )


class CapacityExceeded(QueueError):
    status_code = 409

    def __init__(self, active_staff_count: int):
        self.active_staff_count = active_staff_count
        super().__init__(f"All {active_staff_count} staff are already in service")


class VersionConflict(QueueError):
    status_code = 409

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Stale queue version {expected}, current is {actual}")


class EstimatorUnavailable(QueueError):
    # Recovered internally by the fallback average, never rendered to callers
    status_code = 503


class ConfigurationError(QueueError):
    status_code = 422


class EntryNotFound(QueueError):
    status_code = 404

    def __init__(self, entry_id: str):
        super().__init__(f"Queue entry {entry_id} not found")


class ClinicDayNotFound(QueueError):
    status_code = 404

    def __init__(self, clinic_day_id: str):
        super().__init__(f"Clinic day {clinic_day_id} not found")


class ClinicDayClosed(QueueError):
    status_code = 409

    def __init__(self, clinic_day_id: str):
        super().__init__(f"Clinic day {clinic_day_id} is closed")


class StaleClinicDay(VersionConflict):
    # Raised by the store when another writer committed first; writers retry on fresh state
    pass


class InvalidEventPayload(QueueError):
    status_code = 422

    def __init__(self, kind: str, detail: str):
        self.kind = kind
        super().__init__(f"Invalid payload for '{kind}' event: {detail}")


class OverrideNotAllowed(QueueError):
    status_code = 409
