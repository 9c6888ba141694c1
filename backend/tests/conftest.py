"""Shared test fixtures for backend tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from connwatch.core.clock import Clock
from connwatch.core.config import Settings, settings
from connwatch.models.application import Application, DatabaseConnection
from connwatch.services.connections.base import ConnectionSource, TestableConnection, TestResult

# In-memory SQLite with StaticPool so all connections (including threads) share one DB
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@pytest.fixture(autouse=True)
def setup_test_db():
    """Create all tables before each test, drop after."""
    import connwatch.models  # noqa: F401 - register models
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


class FakeClock(Clock):
    """Clock that only moves when told to. sleep() returns immediately."""

    def __init__(self, now: datetime) -> None:
        self.current = now
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await asyncio.sleep(0)


class FakeSource(ConnectionSource):
    def __init__(self, connections: dict[int, list[TestableConnection]] | None = None, error: Exception | None = None):
        self.connections = connections or {}
        self.error = error
        self.calls: list[int] = []

    async def active_connections(self, application_id: int) -> list[TestableConnection]:
        self.calls.append(application_id)
        if self.error:
            raise self.error
        return self.connections.get(application_id, [])


def make_connection(
    conn_id: int,
    name: str | None = None,
    ok: bool = True,
    delay: float = 0.0,
    error: Exception | None = None,
) -> TestableConnection:
    async def test() -> TestResult:
        if delay:
            await asyncio.sleep(delay)
        if error:
            raise error
        return TestResult(
            is_successful=ok,
            message="Connection successful" if ok else "Connection refused",
            response_time=timedelta(seconds=delay),
        )

    return TestableConnection(id=conn_id, name=name or f"conn-{conn_id}", test=test)


def make_settings(**overrides) -> Settings:
    values = {
        "scheduler_enabled": False,
        "tick_interval_seconds": 60.0,
        "per_connection_timeout_seconds": 1.0,
        "max_concurrent_tests": 5,
        "run_timeout_seconds": 10.0,
        "lease_ttl_seconds": 60.0,
        "persist_retries": 3,
        "persist_retry_delay_seconds": 0.01,
    }
    values.update(overrides)
    return Settings(**values)


def seed_application(name: str = "Billing", owner_id: int = 1, connections: list[dict] | None = None) -> int:
    """Insert an application (and optionally its connections) directly into the test DB."""
    with Session(test_engine) as session:
        app = Application(name=name, owner_id=owner_id)
        session.add(app)
        session.commit()
        session.refresh(app)

        for conn in connections or []:
            session.add(DatabaseConnection(application_id=app.id, **conn))
        session.commit()
        return app.id  # type: ignore[return-value]


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 0, 0, 30, tzinfo=timezone.utc))


@pytest.fixture
def client():
    """FastAPI TestClient on the in-memory DB, background scheduler off."""
    with (
        patch("connwatch.core.database.engine", test_engine),
        patch.object(settings, "scheduler_enabled", False),
    ):
        from connwatch.main import app

        with TestClient(app) as c:
            yield c
