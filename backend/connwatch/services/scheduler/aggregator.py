"""Reduce per-connection test outcomes into a single run outcome. Pure, no I/O."""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

NO_CONNECTIONS_MESSAGE = "No active database connections found"


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"


class TriggerKind(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"

    @property
    def label(self) -> str:
        return "Manual test" if self is TriggerKind.MANUAL else "Scheduled test"


@dataclass
class ConnectionOutcome:
    connection_id: int
    connection_name: str
    is_successful: bool
    message: str
    response_time: timedelta = timedelta(0)

    def to_dict(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "connection_name": self.connection_name,
            "is_successful": self.is_successful,
            "message": self.message,
            "response_time": self.response_time.total_seconds(),
        }


@dataclass
class RunOutcome:
    status: RunStatus
    message: str
    trigger: TriggerKind
    duration: timedelta
    success_count: int = 0
    failure_count: int = 0
    total_connections: int = 0
    outcomes: list[ConnectionOutcome] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "trigger": self.trigger.value,
            "duration": self.duration.total_seconds(),
            "total_connections": self.total_connections,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "test_results": [o.to_dict() for o in self.outcomes],
        }


def classify(success_count: int, failure_count: int) -> RunStatus:
    if success_count + failure_count == 0:
        return RunStatus.SKIPPED
    if failure_count == 0:
        return RunStatus.SUCCESS
    if success_count == 0:
        return RunStatus.FAILED
    return RunStatus.PARTIAL


def aggregate(
    outcomes: list[ConnectionOutcome],
    elapsed: timedelta,
    trigger: TriggerKind = TriggerKind.SCHEDULED,
) -> RunOutcome:
    """Count successes and failures and classify the run.

    The message depends only on the counts, so the order of `outcomes` does not
    matter for it; the list itself is kept as given.
    """
    if not outcomes:
        return RunOutcome(
            status=RunStatus.SKIPPED,
            message=NO_CONNECTIONS_MESSAGE,
            trigger=trigger,
            duration=elapsed,
        )

    success_count = sum(1 for o in outcomes if o.is_successful)
    failure_count = len(outcomes) - success_count
    total = len(outcomes)

    return RunOutcome(
        status=classify(success_count, failure_count),
        message=(
            f"{trigger.label}: {success_count} successful, {failure_count} failed "
            f"out of {total} connections"
        ),
        trigger=trigger,
        duration=elapsed,
        success_count=success_count,
        failure_count=failure_count,
        total_connections=total,
        outcomes=list(outcomes),
    )


def error_outcome(reason: str, elapsed: timedelta, trigger: TriggerKind = TriggerKind.SCHEDULED) -> RunOutcome:
    """Outcome for a run that aborted before its connections were tested."""
    return RunOutcome(
        status=RunStatus.ERROR,
        message=f"{trigger.label} failed: {reason}",
        trigger=trigger,
        duration=elapsed,
    )
