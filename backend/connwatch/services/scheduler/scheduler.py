"""Background scheduler that runs due connection test schedules."""

import asyncio
import logging

from connwatch.core.clock import Clock, system_clock
from connwatch.core.config import Settings, settings as default_settings
from connwatch.core.errors import NotFoundError, PersistenceError, ScheduleBusyError
from connwatch.services.scheduler.aggregator import TriggerKind
from connwatch.services.scheduler.executor import ScheduleExecutor
from connwatch.services.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)


class SchedulerLoop:
    def __init__(
        self,
        executor: ScheduleExecutor,
        store: ScheduleStore,
        settings: Settings = default_settings,
        clock: Clock = system_clock,
    ) -> None:
        self.executor = executor
        self.store = store
        self.settings = settings
        self.clock = clock
        self._inflight: dict[int, asyncio.Task] = {}

    async def tick(self) -> list[asyncio.Task]:
        """Start a run for every due schedule. Returns the tasks started on this tick."""
        now = self.clock.now()
        due = self.store.list_due(now)
        logger.debug(f"Found {len(due)} schedules due for execution")

        started = []
        for schedule_id in due:
            if schedule_id in self._inflight:
                continue
            # Run in background so we don't block the scheduler
            task = asyncio.create_task(self._run_scheduled(schedule_id))
            self._inflight[schedule_id] = task
            task.add_done_callback(lambda _t, sid=schedule_id: self._inflight.pop(sid, None))
            started.append(task)
        return started

    async def _run_scheduled(self, schedule_id: int) -> None:
        try:
            await self.executor.run(schedule_id, TriggerKind.SCHEDULED)
        except ScheduleBusyError:
            logger.debug(f"Schedule {schedule_id} is already running elsewhere, skipping")
        except NotFoundError:
            logger.debug(f"Schedule {schedule_id} was deleted before it could run")
        except PersistenceError as e:
            logger.error(f"Scheduled run for schedule {schedule_id} was not saved: {e}")
        except Exception:
            logger.exception(f"Scheduled run for schedule {schedule_id} failed")

    async def run(self) -> None:
        """Main scheduler loop. Checks every tick_interval_seconds for schedules to run."""
        logger.info("Connection test scheduler started")

        try:
            while True:
                try:
                    await self.tick()
                except Exception as e:
                    logger.error(f"Error occurred while processing scheduled connection tests: {e}")

                await self.clock.sleep(self.settings.tick_interval_seconds)
        finally:
            inflight = list(self._inflight.values())
            for task in inflight:
                task.cancel()
            # Each run records its partial result before it finishes cancelling
            await asyncio.gather(*inflight, return_exceptions=True)
            logger.info("Connection test scheduler stopped")
