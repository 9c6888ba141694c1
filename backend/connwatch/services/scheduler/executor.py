"""Run every active connection test of one schedule and record the outcome.

Both the periodic loop and "run now" go through ScheduleExecutor.run, which
takes the schedule's lease, fans the tests out over a bounded worker set,
aggregates the outcomes and writes them back.
"""

import asyncio
import logging
import os
import socket
import time
import uuid
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from connwatch.core.clock import Clock, system_clock
from connwatch.core.config import Settings, settings as default_settings
from connwatch.core.errors import NotFoundError, PersistenceError, RunError, ScheduleBusyError
from connwatch.services.connections.base import ConnectionSource, TestableConnection
from connwatch.services.scheduler.aggregator import (
    ConnectionOutcome,
    RunOutcome,
    TriggerKind,
    aggregate,
    error_outcome,
)
from connwatch.services.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)


def make_lease_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class RunCancelled(Exception):
    """The run task was cancelled while tests were in flight.

    Carries the outcomes gathered so far, with unfinished tests reported as
    cancelled failures, so the partial run can still be recorded.
    """

    def __init__(self, outcomes: list[ConnectionOutcome]) -> None:
        super().__init__("Run cancelled")
        self.outcomes = outcomes
        self.outcome: RunOutcome | None = None


class ScheduleExecutor:
    def __init__(
        self,
        store: ScheduleStore,
        source: ConnectionSource,
        settings: Settings = default_settings,
        clock: Clock = system_clock,
    ) -> None:
        self.store = store
        self.source = source
        self.settings = settings
        self.clock = clock
        self.owner = make_lease_owner()

    async def run(self, schedule_id: int, trigger: TriggerKind = TriggerKind.SCHEDULED) -> RunOutcome:
        """Execute one run of a schedule.

        Raises NotFoundError if the schedule does not exist, ScheduleBusyError if
        another run holds it (or, for a scheduled run, if it is no longer due),
        and PersistenceError if the result could not be saved. Connection
        failures and source failures end up in the outcome. If the run is
        cancelled mid-test, the partial outcome is saved before CancelledError
        propagates.
        """
        schedule = self.store.get(schedule_id)
        if schedule is None:
            raise NotFoundError("Schedule", schedule_id)

        lease_ttl = timedelta(seconds=self.settings.lease_ttl_seconds)
        acquired = self.store.try_acquire_lease(
            schedule_id, self.owner, lease_ttl, due_only=trigger is TriggerKind.SCHEDULED
        )
        if not acquired:
            raise ScheduleBusyError(schedule_id)

        started_at = self.clock.now()
        cancelled = False
        try:
            logger.info(
                f"Executing {trigger.value} connection test for application {schedule.application_id} "
                f"(schedule {schedule_id})"
            )
            try:
                outcome = await self._execute(schedule.application_id, trigger)
            except RunCancelled as e:
                logger.warning(f"Run of schedule {schedule_id} was cancelled, recording partial result")
                cancelled = True
                outcome = e.outcome
            await self._persist(schedule_id, outcome, started_at)
        finally:
            try:
                self.store.release_lease(schedule_id, self.owner)
            except SQLAlchemyError as e:
                # Lease expires on its own after lease_ttl_seconds
                logger.error(f"Could not release lease on schedule {schedule_id}: {e}")

        if cancelled:
            raise asyncio.CancelledError()

        logger.info(
            f"Completed {trigger.value} connection test for application {schedule.application_id}. "
            f"Status: {outcome.status.value}, Duration: {outcome.duration.total_seconds() * 1000:.0f}ms"
        )
        return outcome

    async def _execute(self, application_id: int, trigger: TriggerKind) -> RunOutcome:
        start = time.perf_counter()

        def elapsed() -> timedelta:
            return timedelta(seconds=time.perf_counter() - start)

        try:
            connections = await self._fetch(application_id)
        except RunError as e:
            logger.error(f"Error executing connection test for application {application_id}: {e}")
            return error_outcome(str(e), elapsed(), trigger)

        if not connections:
            logger.warning(f"No active connections found for application {application_id}")
            return aggregate([], elapsed(), trigger)

        try:
            outcomes = await self.test_connections(connections)
        except RunCancelled as e:
            e.outcome = aggregate(e.outcomes, elapsed(), trigger)
            raise
        return aggregate(outcomes, elapsed(), trigger)

    async def _fetch(self, application_id: int) -> list[TestableConnection]:
        try:
            return await self.source.active_connections(application_id)
        except Exception as e:
            raise RunError(str(e) or type(e).__name__) from e

    async def test_connections(self, connections: list[TestableConnection]) -> list[ConnectionOutcome]:
        """Test all connections, at most `max_concurrent_tests` at a time.

        Each test gets `per_connection_timeout_seconds` once it starts; the
        whole batch gets `run_timeout_seconds`. Tests still pending when the
        batch times out are cancelled and reported as failures. Outcomes are
        returned in the order of `connections`. Cancelling the caller raises
        RunCancelled carrying the outcomes so far.
        """
        semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrent_tests))
        tasks = [asyncio.create_task(self._test_one(conn, semaphore)) for conn in connections]

        try:
            _, pending = await asyncio.wait(tasks, timeout=self.settings.run_timeout_seconds)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise RunCancelled(self._collect(connections, tasks, "run was cancelled"))

        for task in pending:
            task.cancel()
        if pending:
            logger.warning(
                f"Run exceeded {self.settings.run_timeout_seconds}s, cancelled {len(pending)} pending tests"
            )
            await asyncio.gather(*pending, return_exceptions=True)

        return self._collect(connections, tasks, f"run exceeded {self.settings.run_timeout_seconds}s limit")

    @staticmethod
    def _collect(
        connections: list[TestableConnection], tasks: list[asyncio.Task], reason: str
    ) -> list[ConnectionOutcome]:
        outcomes = []
        for conn, task in zip(connections, tasks):
            if task.done() and not task.cancelled():
                outcomes.append(task.result())
            else:
                outcomes.append(
                    ConnectionOutcome(
                        connection_id=conn.id,
                        connection_name=conn.name,
                        is_successful=False,
                        message=f"Test cancelled: {reason}",
                    )
                )
        return outcomes

    async def _test_one(self, conn: TestableConnection, semaphore: asyncio.Semaphore) -> ConnectionOutcome:
        timeout = self.settings.per_connection_timeout_seconds
        async with semaphore:
            start = time.perf_counter()
            try:
                result = await asyncio.wait_for(conn.test(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Connection test timed out for connection {conn.id} ({conn.name})")
                return ConnectionOutcome(
                    connection_id=conn.id,
                    connection_name=conn.name,
                    is_successful=False,
                    message=f"Test failed: timed out after {timeout}s",
                    response_time=timedelta(seconds=time.perf_counter() - start),
                )
            except Exception as e:
                logger.error(f"Error testing connection {conn.id} ({conn.name}): {e}")
                return ConnectionOutcome(
                    connection_id=conn.id,
                    connection_name=conn.name,
                    is_successful=False,
                    message=f"Test failed: {e}",
                    response_time=timedelta(seconds=time.perf_counter() - start),
                )

        if result.is_successful:
            logger.debug(f"Connection test successful for connection {conn.id} ({conn.name})")
        else:
            logger.warning(f"Connection test failed for connection {conn.id} ({conn.name}): {result.message}")
        return ConnectionOutcome(
            connection_id=conn.id,
            connection_name=conn.name,
            is_successful=result.is_successful,
            message=result.message,
            response_time=result.response_time,
        )

    async def _persist(self, schedule_id: int, outcome: RunOutcome, started_at: datetime) -> None:
        attempts = max(1, self.settings.persist_retries)
        for attempt in range(1, attempts + 1):
            try:
                self.store.record_run_result(schedule_id, outcome, started_at, lease_owner=self.owner)
                return
            except SQLAlchemyError as e:
                logger.warning(
                    f"Saving run result for schedule {schedule_id} failed (attempt {attempt}/{attempts}): {e}"
                )
                if attempt == attempts:
                    logger.error(
                        f"Giving up on run result for schedule {schedule_id}: "
                        f"status={outcome.status.value} message='{outcome.message}'"
                    )
                    raise PersistenceError(
                        f"Could not save run result for schedule {schedule_id} after {attempts} attempts"
                    ) from e
                await self.clock.sleep(self.settings.persist_retry_delay_seconds * attempt)
