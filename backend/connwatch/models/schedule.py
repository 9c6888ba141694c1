"""Connection test schedules and run history models."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class ConnectionTestSchedule(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    application_id: int = Field(foreign_key="application.id", unique=True)
    cron_expression: str = Field(max_length=100)  # Standard cron: "0 * * * *" = hourly
    is_enabled: bool = Field(default=True)

    last_run_time: Optional[datetime] = None
    next_run_time: Optional[datetime] = Field(default=None, index=True)
    last_run_status: Optional[str] = Field(default=None, max_length=20)  # success | partial | failed | skipped | error
    last_run_message: Optional[str] = Field(default=None, max_length=1000)
    last_run_duration: Optional[float] = None  # seconds

    # Single-flight marker, held for the duration of a run
    lease_owner: Optional[str] = None
    lease_expires_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ScheduleRun(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    schedule_id: int = Field(foreign_key="connectiontestschedule.id", index=True)
    trigger: str  # scheduled | manual
    started_at: datetime
    finished_at: datetime
    status: str
    message: str = Field(default="")
    total_connections: int = Field(default=0)
    success_count: int = Field(default=0)
    failure_count: int = Field(default=0)
    duration: float = Field(default=0.0)  # seconds
