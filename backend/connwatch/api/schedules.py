"""REST API for managing connection test schedules."""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field

from connwatch.core.errors import NotFoundError, PersistenceError, ScheduleBusyError, ValidationError
from connwatch.models.schedule import ConnectionTestSchedule
from connwatch.services.scheduler.aggregator import TriggerKind
from connwatch.services.scheduler.cron import validate_cron_expression
from connwatch.services.scheduler.executor import ScheduleExecutor
from connwatch.services.scheduler.store import ScheduleStore

router = APIRouter()
logger = logging.getLogger(__name__)


class ScheduleUpsert(BaseModel):
    application_id: int
    cron_expression: str = Field(max_length=100)
    is_enabled: bool = True


class ScheduleUpdate(BaseModel):
    cron_expression: str = Field(max_length=100)
    is_enabled: bool = True


class ScheduleToggle(BaseModel):
    is_enabled: bool


class CronValidateRequest(BaseModel):
    expression: str = Field(max_length=100)


def get_store(request: Request) -> ScheduleStore:
    return request.app.state.schedule_store


def get_executor(request: Request) -> ScheduleExecutor:
    return request.app.state.schedule_executor


def _schedule_to_dict(schedule: ConnectionTestSchedule, application_name: str | None) -> dict:
    return {
        "id": schedule.id,
        "application_id": schedule.application_id,
        "application_name": application_name,
        "cron_expression": schedule.cron_expression,
        "is_enabled": schedule.is_enabled,
        "last_run_time": schedule.last_run_time.isoformat() if schedule.last_run_time else None,
        "next_run_time": schedule.next_run_time.isoformat() if schedule.next_run_time else None,
        "last_run_status": schedule.last_run_status,
        "last_run_message": schedule.last_run_message,
        "last_run_duration": schedule.last_run_duration,
        "created_at": schedule.created_at.isoformat(),
        "updated_at": schedule.updated_at.isoformat(),
    }


# --- Built-in templates ---

TEMPLATES = [
    {"name": "Hourly", "cron_expression": "0 * * * *"},
    {"name": "Every 15 minutes", "cron_expression": "*/15 * * * *"},
    {"name": "Daily at midnight", "cron_expression": "0 0 * * *"},
    {"name": "Weekday mornings", "cron_expression": "0 8 * * 1-5"},
    {"name": "Weekly on Monday", "cron_expression": "0 6 * * 1"},
]


@router.get("/templates")
async def list_templates():
    """Return built-in schedule templates."""
    return TEMPLATES


@router.get("/")
async def list_schedules(
    x_user_id: int | None = Header(default=None),
    store: ScheduleStore = Depends(get_store),
):
    """List schedules, limited to the caller's applications when X-User-Id is sent."""
    rows = store.list_for_owner(x_user_id)
    return [_schedule_to_dict(schedule, app.name) for schedule, app in rows]


@router.get("/application/{application_id}")
async def get_schedule_by_application(application_id: int, store: ScheduleStore = Depends(get_store)):
    schedule = store.get_by_application(application_id)
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found for this application")
    return _schedule_to_dict(schedule, store.application_name(application_id))


@router.post("/validate-cron")
async def validate_cron(body: CronValidateRequest, store: ScheduleStore = Depends(get_store)):
    """Check a cron expression without saving it."""
    result = validate_cron_expression(body.expression, store.clock.now())
    logger.debug(f"Cron expression '{body.expression}' valid: {result.is_valid}")
    return result.to_dict()


@router.post("/")
async def upsert_schedule(body: ScheduleUpsert, store: ScheduleStore = Depends(get_store)):
    try:
        schedule = store.upsert(body.application_id, body.cron_expression, body.is_enabled)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _schedule_to_dict(schedule, store.application_name(schedule.application_id))


@router.get("/{schedule_id}")
async def get_schedule(schedule_id: int, store: ScheduleStore = Depends(get_store)):
    schedule = store.get(schedule_id)
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return _schedule_to_dict(schedule, store.application_name(schedule.application_id))


@router.put("/{schedule_id}")
async def update_schedule(schedule_id: int, body: ScheduleUpdate, store: ScheduleStore = Depends(get_store)):
    try:
        schedule = store.update(schedule_id, body.cron_expression, body.is_enabled)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return _schedule_to_dict(schedule, store.application_name(schedule.application_id))


@router.patch("/{schedule_id}/toggle")
async def toggle_schedule(schedule_id: int, body: ScheduleToggle, store: ScheduleStore = Depends(get_store)):
    try:
        schedule = store.toggle(schedule_id, body.is_enabled)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return _schedule_to_dict(schedule, store.application_name(schedule.application_id))


@router.delete("/{schedule_id}")
async def delete_schedule(schedule_id: int, store: ScheduleStore = Depends(get_store)):
    if not store.delete(schedule_id):
        raise HTTPException(status_code=404, detail="Schedule not found")
    return {"status": "deleted"}


@router.post("/{schedule_id}/run-now")
async def run_schedule_now(schedule_id: int, executor: ScheduleExecutor = Depends(get_executor)):
    """Run the schedule's connection tests immediately and return the outcome."""
    try:
        outcome = await executor.run(schedule_id, TriggerKind.MANUAL)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Schedule not found")
    except ScheduleBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PersistenceError as e:
        logger.error(f"Manual run of schedule {schedule_id} was not saved: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    return outcome.to_dict()


@router.get("/{schedule_id}/runs")
async def list_schedule_runs(schedule_id: int, limit: int = 20, store: ScheduleStore = Depends(get_store)):
    if not store.get(schedule_id):
        raise HTTPException(status_code=404, detail="Schedule not found")
    runs = store.list_runs(schedule_id, limit)
    return [
        {
            "id": r.id,
            "trigger": r.trigger,
            "started_at": r.started_at.isoformat(),
            "finished_at": r.finished_at.isoformat(),
            "status": r.status,
            "message": r.message,
            "total_connections": r.total_connections,
            "success_count": r.success_count,
            "failure_count": r.failure_count,
            "duration": r.duration,
        }
        for r in runs
    ]
