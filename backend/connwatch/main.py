import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from connwatch.core import database
from connwatch.core.config import settings
from connwatch.api import schedules
from connwatch.services.connections.source import DatabaseConnectionSource
from connwatch.services.scheduler.executor import ScheduleExecutor
from connwatch.services.scheduler.scheduler import SchedulerLoop
from connwatch.services.scheduler.store import ScheduleStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure logging based on debug setting
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s" if settings.debug
        else "%(levelname)-8s %(name)s: %(message)s",
    )

    database.init_db()

    store = ScheduleStore(database.engine)
    executor = ScheduleExecutor(store, DatabaseConnectionSource(database.engine), settings)
    app.state.schedule_store = store
    app.state.schedule_executor = executor

    # Start background scheduler
    scheduler_task = None
    if settings.scheduler_enabled:
        scheduler_task = asyncio.create_task(SchedulerLoop(executor, store, settings).run())

    yield

    # Cancel scheduler on shutdown
    if scheduler_task is not None:
        scheduler_task.cancel()
        try:
            await scheduler_task
        except asyncio.CancelledError:
            pass


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(schedules.router, prefix="/api/schedules", tags=["schedules"])


@app.get("/api/health")
async def health():
    return {"status": "ok", "app": settings.app_name}


def serve() -> None:
    import uvicorn

    uvicorn.run("connwatch.main:app", host=settings.host, port=settings.port)
