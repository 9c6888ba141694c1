"""Domain errors raised by the scheduling core and mapped to HTTP responses by the API layer."""


class ConnwatchError(Exception):
    pass


class ValidationError(ConnwatchError):
    """Input rejected before any state change. Carries the offending field."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class CronParseError(ValidationError):
    def __init__(self, message: str) -> None:
        super().__init__("cron_expression", message)


class NotFoundError(ConnwatchError):
    def __init__(self, resource: str, identifier: object) -> None:
        super().__init__(f"{resource} {identifier} not found")
        self.resource = resource
        self.identifier = identifier


class ConnectionTestError(ConnwatchError):
    """A single connection's test raised or timed out. Never fatal to a run."""


class RunError(ConnwatchError):
    """The connection source could not be queried; the run is recorded as an error."""


class ScheduleBusyError(ConnwatchError):
    def __init__(self, schedule_id: int) -> None:
        super().__init__(f"Schedule {schedule_id} is already running")
        self.schedule_id = schedule_id


class PersistenceError(ConnwatchError):
    """A run result could not be written back after all retries."""
