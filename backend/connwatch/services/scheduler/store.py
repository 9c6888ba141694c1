"""Durable access to connection test schedules, their leases and run history."""

import logging
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, or_, select

from connwatch.core.clock import Clock, as_utc, system_clock
from connwatch.core.errors import CronParseError, NotFoundError
from connwatch.models.application import Application
from connwatch.models.schedule import ConnectionTestSchedule, ScheduleRun
from connwatch.services.scheduler.aggregator import RunOutcome
from connwatch.services.scheduler.cron import CronExpression

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000


class ScheduleStore:
    def __init__(self, engine: Engine, clock: Clock = system_clock) -> None:
        self.engine = engine
        self.clock = clock

    # --- Reads ---

    def get(self, schedule_id: int) -> ConnectionTestSchedule | None:
        with Session(self.engine) as session:
            return session.get(ConnectionTestSchedule, schedule_id)

    def get_by_application(self, application_id: int) -> ConnectionTestSchedule | None:
        with Session(self.engine) as session:
            return session.exec(
                select(ConnectionTestSchedule).where(
                    ConnectionTestSchedule.application_id == application_id
                )
            ).first()

    def list_for_owner(self, owner_id: int | None = None) -> list[tuple[ConnectionTestSchedule, Application]]:
        """Schedules with their applications, optionally limited to one owner's applications."""
        with Session(self.engine) as session:
            query = (
                select(ConnectionTestSchedule, Application)
                .join(Application, ConnectionTestSchedule.application_id == Application.id)  # type: ignore
                .order_by(ConnectionTestSchedule.created_at)  # type: ignore
            )
            if owner_id is not None:
                query = query.where(Application.owner_id == owner_id)
            return list(session.exec(query).all())

    def application_name(self, application_id: int) -> str | None:
        with Session(self.engine) as session:
            app = session.get(Application, application_id)
            return app.name if app else None

    def list_due(self, now: datetime) -> list[int]:
        """Ids of enabled schedules whose next run has come and that nobody is running."""
        with Session(self.engine) as session:
            ids = session.exec(
                select(ConnectionTestSchedule.id)
                .where(ConnectionTestSchedule.is_enabled == True)  # noqa: E712
                .where(col(ConnectionTestSchedule.next_run_time) <= now)
                .where(
                    or_(
                        col(ConnectionTestSchedule.lease_owner).is_(None),
                        col(ConnectionTestSchedule.lease_expires_at) < now,
                    )
                )
                .order_by(ConnectionTestSchedule.next_run_time)  # type: ignore
            ).all()
        return [i for i in ids if i is not None]

    def list_runs(self, schedule_id: int, limit: int = 20) -> list[ScheduleRun]:
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(ScheduleRun)
                    .where(ScheduleRun.schedule_id == schedule_id)
                    .order_by(col(ScheduleRun.id).desc())
                    .limit(limit)
                ).all()
            )

    # --- Owner edits ---

    def upsert(self, application_id: int, cron_expression: str, is_enabled: bool = True) -> ConnectionTestSchedule:
        """Create the application's schedule, or update the one it already has.

        The expression is parsed before anything is written.
        """
        cron = CronExpression.parse(cron_expression)
        now = self.clock.now()

        with Session(self.engine) as session:
            if session.get(Application, application_id) is None:
                raise NotFoundError("Application", application_id)

            schedule = session.exec(
                select(ConnectionTestSchedule).where(
                    ConnectionTestSchedule.application_id == application_id
                )
            ).first()

            if schedule is None:
                schedule = ConnectionTestSchedule(
                    application_id=application_id,
                    cron_expression=cron.expression,
                    is_enabled=is_enabled,
                    next_run_time=cron.next_occurrence(now) if is_enabled else None,
                    created_at=now,
                    updated_at=now,
                )
                logger.info(f"Created schedule for application {application_id}: '{cron}'")
            else:
                self._apply_edit(schedule, cron, is_enabled, now)
                logger.info(f"Updated schedule {schedule.id} for application {application_id}: '{cron}'")

            session.add(schedule)
            session.commit()
            session.refresh(schedule)
            return schedule

    def update(self, schedule_id: int, cron_expression: str, is_enabled: bool) -> ConnectionTestSchedule | None:
        cron = CronExpression.parse(cron_expression)
        now = self.clock.now()

        with Session(self.engine) as session:
            schedule = session.get(ConnectionTestSchedule, schedule_id)
            if not schedule:
                return None

            self._apply_edit(schedule, cron, is_enabled, now)
            session.add(schedule)
            session.commit()
            session.refresh(schedule)
            logger.info(f"Updated schedule {schedule_id}: '{cron}', enabled={is_enabled}")
            return schedule

    def toggle(self, schedule_id: int, is_enabled: bool) -> ConnectionTestSchedule | None:
        with Session(self.engine) as session:
            schedule = session.get(ConnectionTestSchedule, schedule_id)
            if not schedule:
                return None

            now = self.clock.now()
            if is_enabled and not schedule.is_enabled:
                schedule.next_run_time = CronExpression.parse(schedule.cron_expression).next_occurrence(now)
            elif not is_enabled:
                schedule.next_run_time = None
            schedule.is_enabled = is_enabled
            schedule.updated_at = now

            session.add(schedule)
            session.commit()
            session.refresh(schedule)
            logger.info(f"Schedule {schedule_id} {'enabled' if is_enabled else 'disabled'}")
            return schedule

    def delete(self, schedule_id: int) -> bool:
        with Session(self.engine) as session:
            schedule = session.get(ConnectionTestSchedule, schedule_id)
            if not schedule:
                return False

            # Delete associated runs
            runs = session.exec(
                select(ScheduleRun).where(ScheduleRun.schedule_id == schedule_id)
            ).all()
            for run in runs:
                session.delete(run)

            session.delete(schedule)
            session.commit()
            logger.info(f"Deleted schedule {schedule_id}")
            return True

    @staticmethod
    def _apply_edit(schedule: ConnectionTestSchedule, cron: CronExpression, is_enabled: bool, now: datetime) -> None:
        changed = schedule.cron_expression != cron.expression or schedule.is_enabled != is_enabled
        schedule.cron_expression = cron.expression
        schedule.is_enabled = is_enabled
        if not is_enabled:
            schedule.next_run_time = None
        elif changed or schedule.next_run_time is None:
            schedule.next_run_time = cron.next_occurrence(now)
        schedule.updated_at = now

    # --- Execution path ---

    def try_acquire_lease(self, schedule_id: int, owner: str, ttl: timedelta, due_only: bool = False) -> bool:
        """Claim the schedule for one run with a single conditional UPDATE.

        Succeeds when nobody holds the lease or the holder's lease has expired.
        With `due_only`, the schedule must also still be enabled and due, so a
        run another instance has just finished is not repeated.
        Raises NotFoundError when the schedule does not exist.
        """
        now = self.clock.now()
        stmt = (
            update(ConnectionTestSchedule)
            .where(col(ConnectionTestSchedule.id) == schedule_id)
            .where(
                or_(
                    col(ConnectionTestSchedule.lease_owner).is_(None),
                    col(ConnectionTestSchedule.lease_expires_at) < now,
                )
            )
            .values(lease_owner=owner, lease_expires_at=now + ttl)
            .execution_options(synchronize_session=False)
        )
        if due_only:
            stmt = stmt.where(col(ConnectionTestSchedule.is_enabled) == True).where(  # noqa: E712
                col(ConnectionTestSchedule.next_run_time) <= now
            )

        with Session(self.engine) as session:
            result = session.exec(stmt)  # type: ignore[call-overload]
            session.commit()
            if result.rowcount == 1:
                return True
            if session.get(ConnectionTestSchedule, schedule_id) is None:
                raise NotFoundError("Schedule", schedule_id)
            return False

    def release_lease(self, schedule_id: int, owner: str) -> None:
        with Session(self.engine) as session:
            session.exec(  # type: ignore[call-overload]
                update(ConnectionTestSchedule)
                .where(col(ConnectionTestSchedule.id) == schedule_id)
                .where(col(ConnectionTestSchedule.lease_owner) == owner)
                .values(lease_owner=None, lease_expires_at=None)
                .execution_options(synchronize_session=False)
            )
            session.commit()

    def record_run_result(
        self,
        schedule_id: int,
        outcome: RunOutcome,
        started_at: datetime,
        lease_owner: str | None = None,
    ) -> bool:
        """Write a finished run back to its schedule and append it to the history.

        The next run time is computed from the expression stored now, so an edit
        made while the run was in flight applies from the next occurrence on.
        Returns False if the schedule was deleted in the meantime.
        """
        now = self.clock.now()
        with Session(self.engine) as session:
            schedule = session.get(ConnectionTestSchedule, schedule_id)
            if not schedule:
                logger.warning(f"Schedule {schedule_id} disappeared before its run result was saved")
                return False

            message = outcome.message[:MAX_MESSAGE_LENGTH]
            schedule.last_run_time = now
            schedule.last_run_status = outcome.status.value
            schedule.last_run_message = message
            schedule.last_run_duration = outcome.duration.total_seconds()
            if schedule.is_enabled:
                try:
                    schedule.next_run_time = CronExpression.parse(schedule.cron_expression).next_occurrence(now)
                except CronParseError:
                    logger.warning(
                        f"Schedule {schedule_id} has an unparsable cron expression '{schedule.cron_expression}'"
                    )
                    schedule.next_run_time = None
            else:
                schedule.next_run_time = None
            if lease_owner is not None and schedule.lease_owner == lease_owner:
                schedule.lease_owner = None
                schedule.lease_expires_at = None
            schedule.updated_at = now

            session.add(schedule)
            session.add(
                ScheduleRun(
                    schedule_id=schedule_id,
                    trigger=outcome.trigger.value,
                    started_at=as_utc(started_at),  # type: ignore[arg-type]
                    finished_at=now,
                    status=outcome.status.value,
                    message=message,
                    total_connections=outcome.total_connections,
                    success_count=outcome.success_count,
                    failure_count=outcome.failure_count,
                    duration=outcome.duration.total_seconds(),
                )
            )
            session.commit()
            return True
