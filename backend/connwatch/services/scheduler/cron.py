"""Cron expression parsing and next-occurrence calculation.

Only the classic 5-field form (minute hour day-of-month month day-of-week) and
the standard @macros are accepted. Parsing and iteration are delegated to
croniter; this module narrows what it accepts and turns its errors into
CronParseError so callers get a field-level validation message.
"""

from dataclasses import dataclass
from datetime import datetime

from croniter import CroniterBadDateError, croniter

from connwatch.core.errors import CronParseError
from connwatch.core.clock import as_utc

MACROS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

FIELD_NAMES = ("minute", "hour", "day of month", "month", "day of week")


@dataclass(frozen=True)
class CronExpression:
    expression: str  # as entered by the user
    fields: tuple[str, ...]  # expanded 5-field form

    @classmethod
    def parse(cls, text: str | None) -> "CronExpression":
        if text is None or not text.strip():
            raise CronParseError("Cron expression is required")

        expression = " ".join(text.split())
        if expression.startswith("@"):
            expanded = MACROS.get(expression.lower())
            if expanded is None:
                raise CronParseError(
                    f"Unknown cron macro '{expression}'. Supported: {', '.join(MACROS)}"
                )
        else:
            expanded = expression

        parts = expanded.split(" ")
        if len(parts) != len(FIELD_NAMES):
            raise CronParseError(
                f"Cron expression must have 5 fields ({', '.join(FIELD_NAMES)}), got {len(parts)}"
            )

        try:
            # Iterating once catches field combinations no calendar date satisfies
            croniter(expanded).get_next(datetime)
        except CroniterBadDateError as e:
            raise CronParseError(f"Cron expression '{expression}' never matches a date") from e
        except (ValueError, KeyError) as e:
            raise CronParseError(f"Invalid cron expression '{expression}': {e}") from e

        return cls(expression=expression, fields=tuple(parts))

    def next_occurrence(self, after: datetime) -> datetime:
        """First matching instant strictly after `after`, in UTC. Naive input is read as UTC."""
        base = as_utc(after)
        try:
            return croniter(" ".join(self.fields), base).get_next(datetime)
        except CroniterBadDateError as e:
            raise CronParseError(f"Cron expression '{self.expression}' has no occurrence after {base.isoformat()}") from e

    def describe(self) -> str:
        minute, hour, day, month, day_of_week = self.fields

        if all(f == "*" for f in self.fields):
            return "Every minute"
        if minute != "*" and hour == "*" and day == "*" and month == "*" and day_of_week == "*":
            return f"Every hour at minute {minute}"
        if minute != "*" and hour != "*" and day == "*" and month == "*":
            if day_of_week == "*":
                return f"Daily at {hour}:{minute.zfill(2)}"
            return f"Weekly on day {day_of_week} at {hour}:{minute.zfill(2)}"
        if minute != "*" and hour != "*" and day != "*" and month == "*" and day_of_week == "*":
            return f"Monthly on day {day} at {hour}:{minute.zfill(2)}"
        return "Custom schedule"

    def __str__(self) -> str:
        return self.expression


@dataclass
class CronValidation:
    is_valid: bool
    description: str | None = None
    next_run_time: datetime | None = None
    error_message: str | None = None

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "description": self.description,
            "next_run_time": self.next_run_time.isoformat() if self.next_run_time else None,
            "error_message": self.error_message,
        }


def validate_cron_expression(text: str | None, now: datetime) -> CronValidation:
    """Check an expression without saving anything."""
    try:
        cron = CronExpression.parse(text)
        next_run_time = cron.next_occurrence(now)
    except CronParseError as e:
        return CronValidation(is_valid=False, error_message=e.message)

    return CronValidation(is_valid=True, description=cron.describe(), next_run_time=next_run_time)
