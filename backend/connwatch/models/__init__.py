from connwatch.models.application import Application, DatabaseConnection
from connwatch.models.schedule import ConnectionTestSchedule, ScheduleRun

__all__ = ["Application", "DatabaseConnection", "ConnectionTestSchedule", "ScheduleRun"]
